"""Backend strategies for streaming chat completions."""

from .base import BackendStrategy, ChatStream
from .http import DirectBackend, HttpChatBackend, ProxyBackend
from .transports import RequestSenderTransport, StreamReaderTransport, TransportResponse

__all__ = [
    "BackendStrategy",
    "ChatStream",
    "DirectBackend",
    "HttpChatBackend",
    "ProxyBackend",
    "RequestSenderTransport",
    "StreamReaderTransport",
    "TransportResponse",
]

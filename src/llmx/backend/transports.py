"""httpx transports that open a streaming POST and expose its byte blocks."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Protocol

import httpx


@dataclass(slots=True)
class TransportResponse:
    """Status, headers and the content-decoded byte blocks of an open response."""

    status_code: int
    headers: Mapping[str, str]
    _read: Callable[[], AsyncIterator[bytes]]

    @classmethod
    def from_httpx(cls, response: httpx.Response, read: Callable[[], AsyncIterator[bytes]]) -> "TransportResponse":
        # httpx.Headers lookups are case-insensitive.
        return cls(status_code=response.status_code, headers=response.headers, _read=read)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def chunks(self) -> AsyncIterator[bytes]:
        return self._read()


class StreamTransport(Protocol):
    def open(
        self, url: str, payload: Dict[str, Any], headers: Optional[Mapping[str, str]] = None
    ) -> contextlib.AbstractAsyncContextManager[TransportResponse]: ...

    async def aclose(self) -> None: ...


class _HttpxTransport:
    def __init__(self, client: httpx.AsyncClient | None = None, *, timeout: float | None = None) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = httpx.Timeout(timeout) if timeout is not None else httpx.Timeout(5.0, read=None)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = {"Content-Type": "application/json"}
        if headers:
            merged.update(headers)
        return merged


class StreamReaderTransport(_HttpxTransport):
    """Reads the decoded body through ``AsyncClient.stream``."""

    @contextlib.asynccontextmanager
    async def open(
        self, url: str, payload: Dict[str, Any], headers: Optional[Mapping[str, str]] = None
    ) -> AsyncIterator[TransportResponse]:
        async with self.client.stream("POST", url, json=payload, headers=self._headers(headers)) as response:
            yield TransportResponse.from_httpx(response, response.aiter_bytes)


class RequestSenderTransport(_HttpxTransport):
    """Builds the request explicitly and sends it with ``stream=True``."""

    @contextlib.asynccontextmanager
    async def open(
        self, url: str, payload: Dict[str, Any], headers: Optional[Mapping[str, str]] = None
    ) -> AsyncIterator[TransportResponse]:
        request = self.client.build_request("POST", url, json=payload, headers=self._headers(headers))
        response = await self.client.send(request, stream=True)
        try:
            yield TransportResponse.from_httpx(response, response.aiter_bytes)
        finally:
            await response.aclose()

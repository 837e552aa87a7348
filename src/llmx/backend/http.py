"""Streaming chat backend over HTTP with pluggable transports."""

from __future__ import annotations

import codecs
import functools
import json
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Sequence

import httpx

from llmx.core.abort import CancelToken
from llmx.core.errors import MetadataParseError, TransportError
from llmx.models.chat import PromptMessage
from llmx.services.logging import StructuredLogger

from .base import BackendStrategy, ChatStream, GenerationInfo
from .transports import RequestSenderTransport, StreamReaderTransport, StreamTransport


def build_payload(
    prompt: Sequence[PromptMessage], model: str, parameters: Mapping[str, Any]
) -> Dict[str, Any]:
    """Request body: model, wire messages, ``stream`` and the spread parameter bag."""

    return {
        "model": model,
        "messages": [message.to_wire() for message in prompt],
        "stream": True,
        **parameters,
    }


def parse_generation_info(raw: Optional[str]) -> Optional[GenerationInfo]:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        raise MetadataParseError(f"Invalid generation info header: {error}") from error
    if not isinstance(parsed, dict):
        raise MetadataParseError("Generation info header is not a JSON object")
    return parsed or None


class HttpChatBackend(BackendStrategy):
    """Sends the prompt as one streaming POST and forwards each decoded block."""

    name = "http"

    def __init__(self, transport: StreamTransport, *, logger: StructuredLogger) -> None:
        self._transport = transport
        self._logger = logger

    def generate_chat(
        self,
        prompt: Sequence[PromptMessage],
        model: str,
        parameters: Mapping[str, Any],
        cancel_token: CancelToken,
        *,
        endpoint: str,
        generation_info_header: str,
    ) -> ChatStream:
        payload = build_payload(prompt, model, parameters)
        source = functools.partial(
            self._read_chat,
            url=endpoint,
            payload=payload,
            cancel_token=cancel_token,
            header_name=generation_info_header,
        )
        return ChatStream(source)

    async def _read_chat(
        self,
        stream: ChatStream,
        *,
        url: str,
        payload: Dict[str, Any],
        cancel_token: CancelToken,
        header_name: str,
    ) -> AsyncIterator[str]:
        if cancel_token.cancelled:
            stream.cancelled = True
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            async with self._transport.open(url, payload) as response:
                if not response.ok:
                    raise TransportError(
                        f"Backend request failed with status: {response.status_code}",
                        status_code=response.status_code,
                    )
                async for block in cancel_token.guard(response.chunks()):
                    text = decoder.decode(block)
                    if text:
                        yield text
                if cancel_token.cancelled:
                    stream.cancelled = True
                    return
                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail
                stream.set_generation_info(self._read_generation_info(response.headers, header_name, url))
        except httpx.HTTPError as error:
            raise TransportError(f"Backend request to {url} failed: {error}") from error

    def _read_generation_info(
        self, headers: Mapping[str, str], header_name: str, url: str
    ) -> Optional[GenerationInfo]:
        try:
            return parse_generation_info(headers.get(header_name))
        except MetadataParseError as error:
            self._logger.warning(
                "backend.generation_info.invalid",
                backend=self.name,
                url=url,
                header=header_name,
                error=str(error),
            )
            return None

    async def aclose(self) -> None:
        await self._transport.aclose()


class DirectBackend(HttpChatBackend):
    """Talks to the model server directly, reading the raw response stream."""

    name = "direct"

    def __init__(
        self,
        *,
        logger: StructuredLogger,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(StreamReaderTransport(client, timeout=timeout), logger=logger)


class ProxyBackend(HttpChatBackend):
    """Goes through the application's backend proxy using a sent streaming request."""

    name = "proxy"

    def __init__(
        self,
        *,
        logger: StructuredLogger,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(RequestSenderTransport(client, timeout=timeout), logger=logger)

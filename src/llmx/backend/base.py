"""Backend strategy contract shared by every chat transport."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Sequence

from llmx.core.abort import CancelToken
from llmx.core.errors import UnsupportedCapabilityError
from llmx.models.chat import PromptMessage

GenerationInfo = Dict[str, Any]


class ChatStream:
    """Lazy sequence of text chunks plus the metadata read once it ends.

    ``source`` is called with the stream itself on first iteration so the
    producer can record :meth:`generation_info` and cancellation.
    """

    def __init__(self, source: Callable[["ChatStream"], AsyncIterator[str]]) -> None:
        self._source = source
        self._chunks: Optional[AsyncIterator[str]] = None
        self._generation_info: Optional[GenerationInfo] = None
        self.cancelled = False
        self.finished = False

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> str:
        if self._chunks is None:
            self._chunks = self._source(self)
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            self.finished = True
            raise

    async def aclose(self) -> None:
        if self._chunks is not None and hasattr(self._chunks, "aclose"):
            await self._chunks.aclose()  # type: ignore[attr-defined]

    def set_generation_info(self, info: Optional[GenerationInfo]) -> None:
        self._generation_info = info

    def generation_info(self) -> Optional[GenerationInfo]:
        """Return the backend metadata, available after the stream is exhausted."""
        return self._generation_info


class BackendStrategy(ABC):
    """Capability set ``{generate_chat, generate_images}``."""

    name: str = "backend"

    @abstractmethod
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
        """Start a streaming chat completion."""

    async def generate_images(self, *args: Any, **kwargs: Any) -> list[str]:
        raise UnsupportedCapabilityError("Image generation")

    async def aclose(self) -> None:
        return None

"""Test configuration for ensuring the src package is importable."""

from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
for path in (PROJECT_ROOT, SRC_PATH):
    value = str(path)
    if value not in sys.path:
        sys.path.insert(0, value)

from llmx.models.chat import MessageNode, Variant  # noqa: E402


class StubLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def info(self, event: str, **fields):
        self.events.append((event, fields))

    debug = warning = error = info

    def child(self, component: str) -> "StubLogger":
        return self

    def set_format(self, fmt: str) -> None:
        pass

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def stub_logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def make_node():
    def factory(node_id: str, content: str = "", *, from_bot: bool = False, images=(), variant_id=None):
        variant = Variant(
            id=variant_id or f"{node_id}-v1",
            content=content,
            from_bot=from_bot,
            image_urls=list(images),
        )
        return MessageNode.single(node_id, variant)

    return factory


def streaming_response(chunks, *, status_code: int = 200, headers=None) -> httpx.Response:
    """Response whose body arrives as the given byte blocks."""

    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(status_code, headers=headers or {}, content=body())


@pytest.fixture
def mock_async_client():
    clients: list[httpx.AsyncClient] = []

    def factory(handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    return factory


@pytest.fixture
def stream_response():
    return streaming_response

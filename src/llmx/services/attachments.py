"""Attachment caches and the resolver used while building prompts."""

from __future__ import annotations

import base64
import mimetypes
from typing import Any, Dict, Optional, Protocol

from .logging import StructuredLogger


class AttachmentCache(Protocol):
    """Lookup boundary for cached image payloads."""

    def get(self, reference: str) -> Optional[str]:
        """Return the inline payload for ``reference`` or ``None`` when absent."""


class MemoryAttachmentCache:
    """In-memory cache handy for tests and for freshly dropped images."""

    def __init__(self, entries: Optional[Dict[str, str]] = None) -> None:
        self._entries: Dict[str, str] = dict(entries or {})

    def get(self, reference: str) -> Optional[str]:
        return self._entries.get(reference)

    def put(self, reference: str, payload: str) -> None:
        self._entries[reference] = payload

    def remove(self, reference: str) -> None:
        self._entries.pop(reference, None)


class FsspecAttachmentCache:
    """Reads cached images from any fsspec filesystem and returns data URLs."""

    def __init__(
        self,
        root: str,
        *,
        protocol: str = "file",
        filesystem: Any | None = None,
        storage_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._root = root.rstrip("/")
        self._fs = filesystem or self._build_filesystem(protocol, storage_options or {})

    @staticmethod
    def _build_filesystem(protocol: str, storage_options: Dict[str, Any]):  # type: ignore[no-untyped-def]
        import fsspec

        return fsspec.filesystem(protocol, **storage_options)

    def get(self, reference: str) -> Optional[str]:
        path = self._make_path(reference)
        try:
            with self._fs.open(path, "rb") as handle:
                data = handle.read()
        except FileNotFoundError:
            return None
        return self.encode_data_url(data, path)

    def put(self, reference: str, data: bytes) -> str:
        path = self._make_path(reference)
        if hasattr(self._fs, "pipe"):
            self._fs.pipe(path, data)
        else:  # pragma: no cover - exercised in filesystems without pipe
            with self._fs.open(path, "wb") as handle:
                handle.write(data)
        return path

    def _make_path(self, reference: str) -> str:
        key = reference.split("://", 1)[1] if "://" in reference else reference
        key = key.lstrip("/")
        return f"{self._root}/{key}" if self._root else key

    @staticmethod
    def encode_data_url(data: bytes, name: str) -> str:
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{content_type};base64,{encoded}"


class AttachmentResolver:
    """Resolves attachment references, omitting any that fail."""

    def __init__(self, cache: AttachmentCache, *, logger: StructuredLogger) -> None:
        self._cache = cache
        self._logger = logger

    def resolve(self, reference: str) -> Optional[str]:
        try:
            payload = self._cache.get(reference)
        except Exception as error:  # noqa: BLE001 - a broken attachment must not fail the prompt
            self._logger.warning("attachments.resolve.failed", reference=reference, error=str(error))
            return None
        if not payload:
            self._logger.debug("attachments.resolve.missing", reference=reference)
            return None
        return payload

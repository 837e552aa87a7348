"""Wiring helpers that assemble the chat core from settings."""

from __future__ import annotations

from typing import Mapping, Optional

import httpx

from llmx.backend.base import BackendStrategy
from llmx.backend.http import DirectBackend, ProxyBackend
from llmx.core.context import ContextBuilder
from llmx.core.generation import GenerationManager
from llmx.services.attachments import AttachmentCache, AttachmentResolver, FsspecAttachmentCache, MemoryAttachmentCache
from llmx.services.connections import ConnectionClient
from llmx.services.logging import StructuredLogger
from llmx.services.settings import AppSettings, load_settings
from llmx.state import ChatController, ToastStore


def build_attachment_cache(settings: AppSettings) -> AttachmentCache:
    if settings.attachments_root:
        return FsspecAttachmentCache(settings.attachments_root, protocol=settings.attachments_protocol)
    return MemoryAttachmentCache()


def build_backends(
    settings: AppSettings,
    logger: StructuredLogger,
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, BackendStrategy]:
    timeout = settings.request_timeout
    return {
        "direct": DirectBackend(logger=logger.child("backend.direct"), client=client, timeout=timeout),
        "proxy": ProxyBackend(logger=logger.child("backend.proxy"), client=client, timeout=timeout),
    }


def build_generation_manager(
    settings: AppSettings,
    logger: StructuredLogger,
    *,
    cache: Optional[AttachmentCache] = None,
    backends: Optional[Mapping[str, BackendStrategy]] = None,
) -> GenerationManager:
    resolver = AttachmentResolver(cache or build_attachment_cache(settings), logger=logger.child("attachments"))
    return GenerationManager(
        context_builder=ContextBuilder(resolver),
        backends=backends or build_backends(settings, logger),
        logger=logger.child("generation"),
    )


def create_controller(
    settings: Optional[AppSettings] = None,
    *,
    logger: Optional[StructuredLogger] = None,
    connection_client: Optional[ConnectionClient] = None,
) -> ChatController:
    settings = settings or load_settings()
    logger = logger or StructuredLogger("llmx")
    logger.set_format(settings.log_format)
    manager = build_generation_manager(settings, logger)
    return ChatController(
        manager=manager,
        toasts=ToastStore(),
        logger=logger,
        connection_client=connection_client
        or ConnectionClient(logger=logger.child("connections"), timeout=settings.request_timeout or 10.0),
    )

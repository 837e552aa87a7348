"""Orchestrates one generation from prompt assembly to registry cleanup."""

from __future__ import annotations

import asyncio
import enum
from typing import AsyncIterator, Mapping, Optional

from llmx.backend.base import BackendStrategy
from llmx.models.chat import ConversationAncestry, Persona, Variant
from llmx.models.connection import ConnectionConfig
from llmx.services.logging import StructuredLogger
from llmx.services.telemetry import telemetry_span

from .abort import AbortRegistry, CancelToken
from .context import ContextBuilder
from .errors import ConfigurationError, TransportError


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in {GenerationState.COMPLETED, GenerationState.FAILED, GenerationState.CANCELLED}


class Generation:
    """Async iterator over the chunks of one generation.

    Nothing happens until the first chunk is requested. A generation whose
    connection lacks a host or model yields nothing and stays ``IDLE``.

    A consumer that may stop early should iterate inside
    ``contextlib.aclosing(generation)`` so the registry entry is released
    on exit rather than when the generator is garbage collected.
    """

    def __init__(
        self,
        manager: "GenerationManager",
        *,
        ancestry: ConversationAncestry,
        cutoff_id: str,
        target_variant: Variant,
        connection: Optional[ConnectionConfig],
        persona: Optional[Persona],
    ) -> None:
        self._manager = manager
        self._ancestry = ancestry
        self._cutoff_id = cutoff_id
        self._connection = connection
        self._persona = persona
        self._chunks: Optional[AsyncIterator[str]] = None
        self._token: Optional[CancelToken] = None
        self.variant = target_variant
        self.state = GenerationState.IDLE
        self.chunk_count = 0

    @property
    def id(self) -> str:
        return self.variant.id

    def __aiter__(self) -> "Generation":
        return self

    async def __anext__(self) -> str:
        if self._chunks is None:
            self._chunks = self._run()
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        if self._chunks is not None:
            await self._chunks.aclose()  # type: ignore[attr-defined]

    def cancel(self) -> bool:
        if self._token is None or self.state.terminal:
            return False
        self._token.cancel()
        return True

    async def _run(self) -> AsyncIterator[str]:
        manager = self._manager
        logger = manager.logger
        connection = self._connection
        variant = self.variant
        if connection is None or not connection.formatted_host or not connection.model:
            logger.info(
                "generation.skipped",
                generation_id=variant.id,
                reason="missing connection, host or model",
            )
            return

        backend = manager.backend_for(connection)
        token = CancelToken()
        cancel_fn = token.cancel
        self._token = token
        manager.registry.register(variant.id, cancel_fn)
        try:
            with telemetry_span(
                logger,
                "generation",
                generation_id=variant.id,
                connection=connection.label,
                model=connection.model,
            ) as span:
                prompt = manager.context_builder.build_context(self._ancestry, self._cutoff_id, self._persona)
                parameters = dict(connection.parameters)
                variant.set_extra_details(sent_with=parameters)
                self.state = GenerationState.DISPATCHED
                logger.info(
                    "generation.start",
                    generation_id=variant.id,
                    backend=backend.name,
                    messages=len(prompt),
                )
                stream = backend.generate_chat(
                    prompt,
                    connection.model,
                    parameters,
                    token,
                    endpoint=connection.endpoint,
                    generation_info_header=connection.generation_info_header,
                )
                try:
                    async for chunk in stream:
                        self.state = GenerationState.STREAMING
                        self.chunk_count += 1
                        yield chunk
                except TransportError as error:
                    self.state = GenerationState.FAILED
                    span.outcome = "failed"
                    logger.error(
                        "generation.failed",
                        generation_id=variant.id,
                        error=str(error),
                        status_code=error.status_code,
                    )
                    raise
                finally:
                    await stream.aclose()

                span.increment("chunks", self.chunk_count)
                if stream.cancelled or token.cancelled:
                    self.state = GenerationState.CANCELLED
                    span.outcome = "cancelled"
                    logger.info("generation.cancelled", generation_id=variant.id, chunks=self.chunk_count)
                    return

                returned_with = stream.generation_info()
                if returned_with:
                    variant.set_extra_details(sent_with=parameters, returned_with=returned_with)
                self.state = GenerationState.COMPLETED
                logger.info(
                    "generation.complete",
                    generation_id=variant.id,
                    chunks=self.chunk_count,
                    returned_with=bool(returned_with),
                )
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer stopped iterating or its task was cancelled.
            if not self.state.terminal:
                self.state = GenerationState.CANCELLED
            raise
        except Exception:
            if not self.state.terminal:
                self.state = GenerationState.FAILED
            raise
        finally:
            manager.registry.clear(variant.id, cancel_fn)


class GenerationManager:
    """Builds context, dispatches to a backend and owns the abort registry."""

    def __init__(
        self,
        *,
        context_builder: ContextBuilder,
        backends: Mapping[str, BackendStrategy],
        logger: StructuredLogger,
        registry: AbortRegistry | None = None,
    ) -> None:
        self.context_builder = context_builder
        self.logger = logger
        self.registry = registry or AbortRegistry()
        self._backends = dict(backends)

    def backend_for(self, connection: ConnectionConfig) -> BackendStrategy:
        try:
            return self._backends[connection.kind]
        except KeyError as error:
            raise ConfigurationError(f"No backend registered for kind {connection.kind!r}") from error

    def generate(
        self,
        ancestry: ConversationAncestry,
        cutoff_id: str,
        target_variant: Variant,
        connection: Optional[ConnectionConfig],
        persona: Optional[Persona] = None,
    ) -> Generation:
        return Generation(
            self,
            ancestry=ancestry,
            cutoff_id=cutoff_id,
            target_variant=target_variant,
            connection=connection,
            persona=persona,
        )

    def cancel(self, generation_id: str) -> bool:
        return self.registry.cancel(generation_id)

    def is_generating(self, generation_id: str) -> bool:
        return generation_id in self.registry

    async def generate_images(self, connection: ConnectionConfig, *args, **kwargs) -> list[str]:
        return await self.backend_for(connection).generate_images(*args, **kwargs)

    async def aclose(self) -> None:
        for backend in self._backends.values():
            await backend.aclose()

"""Reactive chat controller that consumes generations and surfaces failures."""

from __future__ import annotations

import contextlib
import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Tuple

import solara

from llmx.core.errors import TransportError, UnsupportedCapabilityError
from llmx.core.generation import GenerationManager, GenerationState
from llmx.models.chat import ConversationAncestry, MessageNode, Persona, Variant
from llmx.models.connection import ConnectionConfig
from llmx.services.connections import ConnectionClient
from llmx.services.logging import StructuredLogger

from .toasts import ToastStore


@dataclass(slots=True)
class ChatState:
    """What the chat view needs to re-render while generations run."""

    generating_ids: Tuple[str, ...] = ()
    revision: int = 0
    models: Tuple[str, ...] = ()


class ChatController:
    """High-level orchestrator between the message store and the generation core."""

    def __init__(
        self,
        *,
        manager: GenerationManager,
        toasts: ToastStore,
        logger: StructuredLogger,
        connection_client: Optional[ConnectionClient] = None,
    ) -> None:
        self._manager = manager
        self._toasts = toasts
        self._logger = logger
        self._connection_client = connection_client
        self.state: solara.Reactive[ChatState] = solara.reactive(ChatState())

    # ------------------------------------------------------------------ Generation
    async def generate(
        self,
        ancestry: ConversationAncestry,
        target_node: MessageNode,
        connection: Optional[ConnectionConfig],
        persona: Optional[Persona] = None,
        variant: Optional[Variant] = None,
    ) -> GenerationState:
        """Stream a response into ``variant`` (the node's selected one by default)."""

        variant = variant or target_node.selected_variant
        variant.error = None
        generation = self._manager.generate(ancestry, target_node.id, variant, connection, persona)
        self._set_generating(variant.id, True)
        try:
            async with contextlib.aclosing(generation) as chunks:
                async for chunk in chunks:
                    variant.append(chunk)
                    self._bump()
        except TransportError as error:
            variant.error = str(error)
            self._toasts.add_toast(f"Generation failed: {error}", "error")
        finally:
            self._set_generating(variant.id, False)

        if generation.state is GenerationState.IDLE:
            self._toasts.add_toast("No connection or model selected", "error")
        return generation.state

    def stop(self, variant_id: str) -> bool:
        return self._manager.cancel(variant_id)

    def stop_all(self) -> int:
        return sum(1 for variant_id in self.state.value.generating_ids if self._manager.cancel(variant_id))

    async def generate_images(self, connection: ConnectionConfig, prompt: str) -> List[str]:
        try:
            return await self._manager.generate_images(connection, prompt)
        except UnsupportedCapabilityError as error:
            self._toasts.add_toast(str(error), "error")
            return []

    # ------------------------------------------------------------------ Connections
    def refresh_models(self, connection: ConnectionConfig) -> List[str]:
        if self._connection_client is None:
            return []
        try:
            models = self._connection_client.fetch_models(connection)
        except TransportError as error:
            self._logger.warning("connection.models.failed", connection=connection.label, error=str(error))
            self._toasts.add_toast(f"Unable to get models for {connection.label}", "error")
            return []
        self._replace(models=tuple(models))
        return models

    # ------------------------------------------------------------------ Internals
    def _replace(self, **changes) -> None:
        self.state.set(dataclasses.replace(self.state.value, **changes))

    def _set_generating(self, variant_id: str, active: bool) -> None:
        prev = self.state.value
        ids = tuple(i for i in prev.generating_ids if i != variant_id)
        if active:
            ids = (*ids, variant_id)
        self._replace(generating_ids=ids, revision=prev.revision + 1)

    def _bump(self) -> None:
        self._replace(revision=self.state.value.revision + 1)

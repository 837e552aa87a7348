"""Linear prompt assembly from a branch of the message tree."""

from __future__ import annotations

from typing import List, Optional

from llmx.models.chat import (
    ContentPart,
    ConversationAncestry,
    Persona,
    PromptMessage,
    Variant,
    image_part,
    text_part,
)
from llmx.services.attachments import AttachmentResolver


class ContextBuilder:
    """Walks ancestry root-to-leaf and emits the prompt for one generation."""

    def __init__(self, resolver: AttachmentResolver) -> None:
        self._resolver = resolver

    def build_context(
        self,
        ancestry: ConversationAncestry,
        cutoff_id: str,
        persona: Optional[Persona] = None,
    ) -> List[PromptMessage]:
        messages: List[PromptMessage] = []
        if persona is not None:
            messages.append(PromptMessage.system(persona.description))

        for node in ancestry:
            # The cutoff node is the one being generated.
            if node.id == cutoff_id:
                break
            variant = node.selected_variant
            if variant.from_bot:
                messages.append(PromptMessage.assistant(variant.content))
            else:
                messages.append(self._user_message(variant))
        return messages

    def _user_message(self, variant: Variant) -> PromptMessage:
        if not variant.image_urls:
            return PromptMessage.user(variant.content)

        parts: List[ContentPart] = [text_part(variant.content)]
        for reference in variant.image_urls:
            payload = self._resolver.resolve(reference)
            if payload:
                parts.append(image_part(payload))
        return PromptMessage.user(parts)

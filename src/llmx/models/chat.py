# Data models shared by the context builder and the generation manager.

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

PromptRole = Literal["user", "assistant", "system"]
ContentPart = Dict[str, Any]
PromptContent = Union[str, List[ContentPart]]


def new_variant_id() -> str:
    """Generate a stable unique identifier for variants."""
    return str(uuid.uuid4())


@dataclass(slots=True)
class ExtraDetails:
    """Parameters a generation was sent with and metadata it returned."""

    sent_with: Optional[Dict[str, Any]] = None
    returned_with: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class Variant:
    """One candidate content for a conversation turn."""

    id: str
    content: str = ""
    from_bot: bool = False
    image_urls: List[str] = field(default_factory=list)
    extra_details: ExtraDetails = field(default_factory=ExtraDetails)
    error: Optional[str] = None

    def set_extra_details(
        self,
        *,
        sent_with: Optional[Dict[str, Any]] = None,
        returned_with: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.extra_details = ExtraDetails(sent_with=sent_with, returned_with=returned_with)

    def append(self, chunk: str) -> None:
        self.content += chunk


@dataclass(slots=True)
class MessageNode:
    """A turn in the message tree; prompting only ever sees the selected variant."""

    id: str
    variants: List[Variant]
    selected_index: int = 0

    def __post_init__(self) -> None:
        if not self.variants:
            raise ValueError(f"Message node {self.id!r} requires at least one variant")
        if not 0 <= self.selected_index < len(self.variants):
            raise IndexError(f"Selected variant {self.selected_index} out of range for node {self.id!r}")

    @property
    def selected_variant(self) -> Variant:
        return self.variants[self.selected_index]

    @property
    def from_bot(self) -> bool:
        return self.selected_variant.from_bot

    @classmethod
    def single(cls, node_id: str, variant: Variant) -> "MessageNode":
        return cls(id=node_id, variants=[variant])


ConversationAncestry = Sequence[MessageNode]


@dataclass(slots=True, frozen=True)
class Persona:
    """System instruction supplied by the persona store."""

    name: str
    description: str


@dataclass(slots=True)
class PromptMessage:
    """Single entry in the linear prompt sent to a backend."""

    role: PromptRole
    content: PromptContent

    @classmethod
    def system(cls, text: str) -> "PromptMessage":
        return cls(role="system", content=text)

    @classmethod
    def user(cls, content: PromptContent) -> "PromptMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, text: str) -> "PromptMessage":
        return cls(role="assistant", content=text)

    def to_wire(self) -> Dict[str, str]:
        # Structured content is sent as its JSON encoding.
        content = self.content if isinstance(self.content, str) else json.dumps(self.content)
        return {"role": self.role, "content": content}


def text_part(text: str) -> ContentPart:
    return {"type": "text", "text": text}


def image_part(payload: str) -> ContentPart:
    return {"type": "image_url", "image_url": payload}

"""Data contracts used across the chat core."""

from .chat import (
    ConversationAncestry,
    ExtraDetails,
    MessageNode,
    Persona,
    PromptMessage,
    Variant,
)
from .connection import ConnectionConfig
from .toast import Toast

__all__ = [
    "ConnectionConfig",
    "ConversationAncestry",
    "ExtraDetails",
    "MessageNode",
    "Persona",
    "PromptMessage",
    "Toast",
    "Variant",
]

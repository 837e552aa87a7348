"""Reactive state controllers for the chat client."""

from .chat import ChatController, ChatState
from .toasts import ToastStore

__all__ = ["ChatController", "ChatState", "ToastStore"]

"""Bounded notification queue surfaced by the toast center."""

from __future__ import annotations

import itertools
from typing import Tuple

import solara

from llmx.models.toast import Toast, ToastType

MAX_TOASTS = 10


class ToastStore:
    def __init__(self, max_toasts: int = MAX_TOASTS) -> None:
        self.max_toasts = max_toasts
        self.toasts: solara.Reactive[Tuple[Toast, ...]] = solara.reactive(())
        self._ids = itertools.count(1)

    def add_toast(self, message: str, type: ToastType = "info") -> Toast:
        toast = Toast(id=f"toast_{next(self._ids)}", message=message, type=type)
        toasts = self.toasts.value
        if len(toasts) >= self.max_toasts:
            # Oldest toast makes room for the new one.
            toasts = toasts[len(toasts) - self.max_toasts + 1:]
        self.toasts.set((*toasts, toast))
        return toast

    def remove_toast(self, toast_id: str) -> None:
        self.toasts.set(tuple(toast for toast in self.toasts.value if toast.id != toast_id))

    def clear_toasts(self) -> None:
        self.toasts.set(())

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ToastType = Literal["error", "success", "info"]


@dataclass(slots=True, frozen=True)
class Toast:
    """User-facing notification queued by the toast store."""

    id: str
    message: str
    type: ToastType

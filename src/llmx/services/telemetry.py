"""Span helper used to time generations and model refreshes."""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

from .logging import StructuredLogger


@dataclass
class TelemetrySpan:
    """Data captured for a single span."""

    name: str
    start_time: float
    metadata: Dict[str, Any]
    outcome: str = "ok"
    counters: Dict[str, int] = field(default_factory=dict)

    def increment(self, key: str, amount: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + amount

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.start_time) * 1000)


@contextlib.contextmanager
def telemetry_span(logger: StructuredLogger, name: str, **metadata: Any) -> Iterator[TelemetrySpan]:
    """Context manager that logs span lifecycle events.

    Callers may set ``span.outcome`` to report how the span ended; raised
    exceptions are logged as ``error`` and re-raised.
    """

    start = time.perf_counter()
    logger.debug("telemetry.span.start", span=name, **metadata)
    span = TelemetrySpan(name=name, start_time=start, metadata=metadata)
    try:
        yield span
    except Exception as error:
        span.outcome = "error"
        logger.error("telemetry.span.error", span=name, error=str(error), **metadata)
        raise
    finally:
        logger.info(
            "telemetry.span.finish",
            span=name,
            outcome=span.outcome,
            duration_ms=span.elapsed_ms,
            **span.counters,
            **metadata,
        )

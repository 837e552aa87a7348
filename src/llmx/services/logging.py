"""Structured logging for generation lifecycle events."""

from __future__ import annotations

import datetime as _dt
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(slots=True)
class _LogContext:
    app_name: str
    environment: str
    session_id: str | None

    @classmethod
    def default_from_environment(cls) -> "_LogContext":
        app_name = os.getenv("LLMX_APP_NAME", "llmx")
        environment = os.getenv("LLMX_ENVIRONMENT", "local").lower()
        return cls(app_name, environment, os.getenv("LLMX_SESSION_ID"))

    def as_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"app": self.app_name, "environment": self.environment}
        if self.session_id:
            fields["session_id"] = self.session_id
        return fields


class _Unset:
    pass


_UNSET = _Unset()


@dataclass
class LogEvent:
    """Structured payload emitted by the chat core."""

    event: str
    severity: str = "info"
    component: str = "llmx"
    message: str | None = None
    fields: Dict[str, Any] | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
            "event": self.event,
            "severity": self.severity,
            "component": self.component,
        }
        if self.message:
            payload["message"] = self.message
        if self.fields:
            payload.update(self.fields)
        return payload


class StructuredLogger:
    """Event-name logger writing human or JSON lines through :mod:`logging`.

    Console output is controlled through ``LLMX_LOG_FORMAT`` (``human``,
    ``json`` or ``both``) and can be silenced with
    ``LLMX_DISABLE_CONSOLE_LOGS=1``.
    """

    def __init__(self, name: str = "llmx", *, component: str = "llmx") -> None:
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._component = component
        self._console_enabled = os.getenv("LLMX_DISABLE_CONSOLE_LOGS", "0") != "1"
        self._console_format = os.getenv("LLMX_LOG_FORMAT", "human").lower()
        self._context = _LogContext.default_from_environment()

    def log(self, event: str, *, severity: str = "info", message: str | None = None, **fields: Any) -> None:
        merged = {**self._context.as_fields(), **fields}
        payload = LogEvent(
            event=event,
            severity=severity,
            component=self._component,
            message=message,
            fields=merged,
        )
        self._emit(payload)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(event, severity="debug", **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(event, severity="info", **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(event, severity="warning", **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log(event, severity="error", **fields)

    # ------------------------------------------------------------------ context configuration
    def configure_context(
        self,
        *,
        app_name: str | None = None,
        environment: str | None = None,
        session_id: str | None | _Unset = _UNSET,
    ) -> None:
        if app_name is not None:
            self._context.app_name = app_name
        if environment is not None:
            self._context.environment = environment.lower()
        if session_id is not _UNSET:
            self._context.session_id = session_id

    def set_format(self, fmt: str) -> None:
        self._console_format = fmt.lower()

    def child(self, component: str) -> "StructuredLogger":
        """Return a logger sharing this one's sink and context under another component."""
        clone = StructuredLogger.__new__(StructuredLogger)
        clone._logger = self._logger
        clone._component = component
        clone._console_enabled = self._console_enabled
        clone._console_format = self._console_format
        clone._context = self._context
        return clone

    # ------------------------------------------------------------------ internals
    def _emit(self, event: LogEvent) -> None:
        if not self._console_enabled:
            return
        record = event.to_dict()
        level = self._severity_to_level(record.get("severity", "info"))
        if self._console_format in {"json", "both"}:
            self._logger.log(level, json.dumps(record, default=str))
        if self._console_format in {"human", "both"}:
            self._logger.log(level, self._format_human(record))

    @staticmethod
    def _severity_to_level(severity: str) -> int:
        mapping = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        return mapping.get(severity.lower(), logging.INFO)

    def _format_human(self, record: Dict[str, Any]) -> str:
        data = dict(record)
        timestamp = data.pop("timestamp", "-")
        event = data.pop("event", "unknown")
        severity = data.pop("severity", "info").upper()
        component = data.pop("component", "")
        message = data.pop("message", None)
        fields = " ".join(
            f"{key}={self._format_field_value(value)}" for key, value in sorted(data.items())
        )
        parts = [f"[{timestamp}]", severity, event]
        if component:
            parts.append(f"({component})")
        if message:
            parts.append(f"- {message}")
        if fields:
            parts.append(f"- {fields}")
        return " ".join(part for part in parts if part)

    @staticmethod
    def _format_field_value(value: Any) -> str:
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str)
        return str(value)

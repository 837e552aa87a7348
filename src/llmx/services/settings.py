"""Settings loading for connections, persona and ambient options."""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from llmx.core.errors import ConfigurationError
from llmx.models.chat import Persona
from llmx.models.connection import ConnectionConfig

SETTINGS_ENV_VAR = "LLMX_SETTINGS_PATH"
ENV_PREFIX = "LLMX_"
DEFAULT_SETTINGS_FILE = "llmx.toml"

_logger = logging.getLogger("llmx.settings")


def _normalise_key(value: str) -> str:
    return value.strip().lower()


def _json_or_raw(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _parse_toml(raw: str) -> dict[str, Any]:
    try:
        return tomllib.loads(raw)
    except Exception as error:  # noqa: BLE001 - normalization layer
        raise ValueError("Invalid TOML payload") from error


def _parse_json(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError("Invalid JSON payload") from error
    if not isinstance(data, dict):
        raise ValueError("JSON settings must be an object")
    return data


def _parse_simple_kv(raw: str) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise ValueError("Invalid key/value configuration")
        key, value = line.split("=", 1)
        data[key.strip()] = _json_or_raw(value.strip().strip('"'))
    return data


def parse_settings_text(raw: str) -> dict[str, Any]:
    """Parse a settings payload as TOML, then JSON, then ``key=value`` lines."""

    if not raw.strip():
        return {}
    for parser in (_parse_toml, _parse_json, _parse_simple_kv):
        try:
            parsed = parser(raw)
        except ValueError:
            continue
        return {_normalise_key(k): v for k, v in parsed.items()}
    raise ConfigurationError("Settings file is neither TOML, JSON nor key=value lines")


def _resolve_settings_path(path: Path | str | None, env: Mapping[str, str]) -> Path | None:
    if path is not None:
        return Path(path).expanduser()
    env_path = env.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    default_path = Path.cwd() / DEFAULT_SETTINGS_FILE
    return default_path if default_path.exists() else None


def _environment_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX) or key == SETTINGS_ENV_VAR:
            continue
        overrides[_normalise_key(key[len(ENV_PREFIX):])] = _json_or_raw(value)
    return overrides


@dataclass(slots=True)
class AppSettings:
    """Resolved configuration for a chat session."""

    connections: List[ConnectionConfig] = field(default_factory=list)
    selected_connection: Optional[str] = None
    persona: Optional[Persona] = None
    attachments_root: Optional[str] = None
    attachments_protocol: str = "file"
    log_format: str = "human"
    request_timeout: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def active_connection(self) -> Optional[ConnectionConfig]:
        if not self.connections:
            return None
        if self.selected_connection:
            for connection in self.connections:
                if connection.label == self.selected_connection:
                    return connection
            return None
        return self.connections[0]

    def connection(self, label: str) -> Optional[ConnectionConfig]:
        return next((c for c in self.connections if c.label == label), None)


def _build_connections(data: Mapping[str, Any]) -> List[ConnectionConfig]:
    raw = data.get("connections")
    if raw is None:
        # Flat single-connection form: host/model/kind/parameters at top level.
        if not data.get("host"):
            return []
        raw = [{key: data[key] for key in data if key in _CONNECTION_KEYS}]
    if isinstance(raw, Mapping):
        raw = [dict(value, label=value.get("label", label)) for label, value in raw.items()]
    if not isinstance(raw, list):
        raise ConfigurationError("connections must be a list or a table of tables")
    return [ConnectionConfig.from_mapping(item) for item in raw]


_CONNECTION_KEYS = {
    "label",
    "host",
    "model",
    "kind",
    "path",
    "models_path",
    "parameters",
    "generation_info_header",
}


def _build_persona(data: Mapping[str, Any]) -> Optional[Persona]:
    persona = data.get("persona")
    if persona is None:
        return None
    if isinstance(persona, str):
        return Persona(name="default", description=persona) if persona.strip() else None
    if isinstance(persona, Mapping) and persona.get("description"):
        return Persona(name=str(persona.get("name", "default")), description=str(persona["description"]))
    raise ConfigurationError("persona must be a string or a table with a description")


def load_settings(path: Path | str | None = None, *, env: Mapping[str, str] | None = None) -> AppSettings:
    """Load settings from file and ``LLMX_*`` environment overrides."""

    environment = os.environ if env is None else env
    data: dict[str, Any] = {}
    settings_path = _resolve_settings_path(path, environment)
    if settings_path is not None:
        if settings_path.exists():
            data = parse_settings_text(settings_path.read_text(encoding="utf-8"))
        else:
            _logger.debug("settings.missing", extra={"path": str(settings_path)})
    data.update(_environment_overrides(environment))

    timeout = data.get("request_timeout")
    try:
        request_timeout = float(timeout) if timeout is not None else None
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"request_timeout must be a number, got {timeout!r}") from error

    known = _CONNECTION_KEYS | {
        "connections",
        "selected_connection",
        "persona",
        "attachments_root",
        "attachments_protocol",
        "log_format",
        "request_timeout",
    }
    return AppSettings(
        connections=_build_connections(data),
        selected_connection=data.get("selected_connection"),
        persona=_build_persona(data),
        attachments_root=data.get("attachments_root"),
        attachments_protocol=str(data.get("attachments_protocol", "file")),
        log_format=str(data.get("log_format", "human")).lower(),
        request_timeout=request_timeout,
        extra={key: value for key, value in data.items() if key not in known},
    )

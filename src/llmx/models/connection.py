"""Connection descriptors consumed by the generation manager."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping

from llmx.core.errors import ConfigurationError

BackendKind = Literal["direct", "proxy"]
BACKEND_KINDS: tuple[str, ...] = ("direct", "proxy")
DEFAULT_GENERATION_INFO_HEADER = "x-generation-info"


def validate_parameters(parameters: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a plain copy of ``parameters`` after checking it is JSON serialisable."""

    payload = dict(parameters)
    for key in payload:
        if not isinstance(key, str):
            raise ConfigurationError(f"Generation parameter keys must be strings, got {key!r}")
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"Generation parameters are not JSON serialisable: {error}") from error
    return payload


@dataclass(slots=True)
class ConnectionConfig:
    """Endpoint, model and the opaque parameter bag forwarded to a backend."""

    label: str
    host: str | None
    model: str | None = None
    kind: BackendKind = "direct"
    path: str = "/api/chat"
    models_path: str = "/api/tags"
    parameters: Dict[str, Any] = field(default_factory=dict)
    generation_info_header: str = DEFAULT_GENERATION_INFO_HEADER

    def __post_init__(self) -> None:
        if self.kind not in BACKEND_KINDS:
            raise ConfigurationError(f"Unknown backend kind {self.kind!r} for connection {self.label!r}")
        self.parameters = validate_parameters(self.parameters)

    @property
    def formatted_host(self) -> str | None:
        if not self.host:
            return None
        host = self.host.strip().rstrip("/")
        return host or None

    @property
    def endpoint(self) -> str:
        return self._join(self.path)

    @property
    def models_endpoint(self) -> str:
        return self._join(self.models_path)

    def _join(self, path: str) -> str:
        host = self.formatted_host
        if host is None:
            raise ConfigurationError(f"Connection {self.label!r} has no host")
        return f"{host}/{path.lstrip('/')}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConnectionConfig":
        parameters = data.get("parameters") or {}
        if isinstance(parameters, str):
            try:
                parameters = json.loads(parameters)
            except json.JSONDecodeError as error:
                raise ConfigurationError("Connection parameters must be a JSON object") from error
        if not isinstance(parameters, Mapping):
            raise ConfigurationError("Connection parameters must be a mapping")
        label = str(data.get("label") or data.get("host") or "default")
        return cls(
            label=label,
            host=data.get("host"),
            model=data.get("model"),
            kind=str(data.get("kind", "direct")).lower(),  # type: ignore[arg-type]
            path=str(data.get("path", "/api/chat")),
            models_path=str(data.get("models_path", "/api/tags")),
            parameters=dict(parameters),
            generation_info_header=str(
                data.get("generation_info_header", DEFAULT_GENERATION_INFO_HEADER)
            ),
        )

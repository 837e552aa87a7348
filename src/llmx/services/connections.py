"""HTTP client behind the connection store's model refresh hook."""

from __future__ import annotations

from typing import Any, List, Optional

import httpx

from llmx.core.errors import TransportError
from llmx.models.connection import ConnectionConfig

from .logging import StructuredLogger
from .telemetry import telemetry_span


def extract_model_names(payload: Any) -> List[str]:
    """Accept Ollama-style ``{"models": [...]}`` and OpenAI-style ``{"data": [...]}`` listings."""

    if not isinstance(payload, dict):
        return []
    names: List[str] = []
    for entry in payload.get("models") or []:
        if isinstance(entry, dict):
            name = entry.get("name") or entry.get("model")
        else:
            name = entry
        if name:
            names.append(str(name))
    for entry in payload.get("data") or []:
        name = entry.get("id") if isinstance(entry, dict) else entry
        if name:
            names.append(str(name))
    return names


class ConnectionClient:
    """Minimal wrapper around httpx for connection housekeeping calls."""

    def __init__(
        self,
        *,
        logger: StructuredLogger,
        timeout: float = 10.0,
        session: Optional[httpx.Client] = None,
    ) -> None:
        self._logger = logger
        self._session = session or httpx.Client(timeout=timeout)

    def fetch_models(self, connection: ConnectionConfig) -> List[str]:
        url = connection.models_endpoint
        with telemetry_span(self._logger, "connection.fetch_models", connection=connection.label):
            try:
                response = self._session.get(url)
            except httpx.HTTPError as error:
                raise TransportError(f"Unable to reach {url}: {error}") from error
            if response.is_error:
                raise TransportError(
                    f"Model listing failed with status: {response.status_code}",
                    status_code=response.status_code,
                )
            try:
                payload = response.json()
            except ValueError as error:
                raise TransportError(f"Model listing from {url} is not JSON") from error
        models = extract_model_names(payload)
        self._logger.info("connection.models", connection=connection.label, count=len(models))
        return models

    def close(self) -> None:
        self._session.close()

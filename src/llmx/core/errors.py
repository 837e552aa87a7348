"""Error taxonomy surfaced by the generation core."""

from __future__ import annotations


class LLMXError(Exception):
    """Base class for errors raised by the chat core."""


class TransportError(LLMXError):
    """Non-success response status or network failure while talking to a backend."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnsupportedCapabilityError(LLMXError):
    """Raised for operations a backend never supports."""

    def __init__(self, capability: str) -> None:
        super().__init__(f"{capability} is not supported by this backend")
        self.capability = capability


class MetadataParseError(LLMXError):
    """Generation metadata header could not be decoded; never fatal."""


class ConfigurationError(LLMXError, ValueError):
    """Settings or connection parameters are invalid."""

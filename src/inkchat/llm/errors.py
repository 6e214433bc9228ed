"""Standardized error types for chat providers and the orchestrator.

Every error carries a machine-readable code plus a human-readable message so
hosts can render a notification without inspecting exception classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "ChatError",
    "ConfigurationError",
    "UnknownProviderError",
    "TransportError",
    "EmptyResponseError",
    "StreamCancelled",
]


class ErrorCode:
    """Constants for error codes surfaced to the user."""

    CONFIGURATION = "configuration"
    UNKNOWN_PROVIDER = "unknown_provider"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    CANCELLED = "cancelled"
    EMPTY_RESPONSE = "empty_response"
    DOCUMENT = "document"


@dataclass
class ChatError(Exception):
    """Base exception class for all chat errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for notifications and logs."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ConfigurationError(ChatError):
    """Raised before any network call when a credential or endpoint is missing."""

    error_code: str = field(default=ErrorCode.CONFIGURATION)
    message: str = field(default="Provider is not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Add the missing value in the inkchat settings")

    provider: str | None = field(default=None)
    setting: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.provider is not None:
            result["provider"] = self.provider
        if self.setting is not None:
            result["setting"] = self.setting
        return result


@dataclass
class UnknownProviderError(ConfigurationError):
    """Raised when a model string names a provider prefix nobody implements."""

    error_code: str = field(default=ErrorCode.UNKNOWN_PROVIDER)
    message: str = field(default="Unknown provider")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(
        default="Use one of: ollama, openai, anthropic, gemini, azure (e.g. openai/gpt-5-mini)"
    )

    @classmethod
    def for_prefix(cls, prefix: str) -> "UnknownProviderError":
        return cls(message=f"Unknown provider: {prefix}", provider=prefix)


@dataclass
class TransportError(ChatError):
    """Network failure, non-2xx response or vendor error frame mid-stream."""

    error_code: str = field(default=ErrorCode.TRANSPORT)
    message: str = field(default="Request to the model provider failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    provider: str | None = field(default=None)
    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.provider is not None:
            result["provider"] = self.provider
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result

    @classmethod
    def from_status(cls, provider: str, status_code: int, detail: str) -> "TransportError":
        return cls(
            error_code=ErrorCode.HTTP_STATUS,
            message=f"{provider} error: {status_code} {detail}".rstrip(),
            provider=provider,
            status_code=status_code,
        )


@dataclass
class EmptyResponseError(TransportError):
    """A stream ended normally without producing a single fragment."""

    error_code: str = field(default=ErrorCode.EMPTY_RESPONSE)
    message: str = field(default="The model returned an empty response")


@dataclass
class StreamCancelled(ChatError):
    """Signals that the user stopped a stream. Not a failure."""

    error_code: str = field(default=ErrorCode.CANCELLED)
    message: str = field(default="Stopped")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    severity: ClassVar[str] = "info"

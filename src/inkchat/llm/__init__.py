"""Provider abstraction and the vendor adapters behind it."""

from .base import DEFAULT_PROVIDER, ChatProvider, HttpChatProvider, ProviderId
from .cancellation import AbortSignal
from .catalog import list_all_models, provider_model_groups
from .errors import (
    ChatError,
    ConfigurationError,
    EmptyResponseError,
    ErrorCode,
    StreamCancelled,
    TransportError,
    UnknownProviderError,
)
from .factory import all_providers, create_provider, parse_model_string, resolve_provider

__all__ = [
    "DEFAULT_PROVIDER",
    "ChatProvider",
    "HttpChatProvider",
    "ProviderId",
    "AbortSignal",
    "list_all_models",
    "provider_model_groups",
    "ChatError",
    "ConfigurationError",
    "EmptyResponseError",
    "ErrorCode",
    "StreamCancelled",
    "TransportError",
    "UnknownProviderError",
    "all_providers",
    "create_provider",
    "parse_model_string",
    "resolve_provider",
]

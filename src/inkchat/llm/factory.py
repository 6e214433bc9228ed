"""Model-string routing: pick the adapter named by the ``provider/`` prefix."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from .anthropic_provider import AnthropicProvider
from .azure_provider import AzureOpenAIProvider
from .base import DEFAULT_PROVIDER, ChatProvider, ProviderId
from .errors import UnknownProviderError
from .gemini_provider import GeminiProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..services.settings import Settings

__all__ = ["parse_model_string", "create_provider", "resolve_provider", "all_providers"]

LOGGER = logging.getLogger(__name__)


def parse_model_string(model_string: str) -> tuple[ProviderId, str]:
    """Split ``provider/model`` into its provider id and vendor model name.

    Only the first ``/`` separates the prefix, so vendor names may contain
    slashes themselves. A string without a slash (or with an empty prefix)
    belongs to the default provider.
    """

    text = (model_string or "").strip()
    prefix, separator, remainder = text.partition("/")
    if not separator:
        return DEFAULT_PROVIDER, text
    if not prefix:
        return DEFAULT_PROVIDER, remainder
    try:
        return ProviderId(prefix), remainder
    except ValueError:
        raise UnknownProviderError.for_prefix(prefix) from None


def create_provider(
    provider_id: ProviderId | str,
    settings: "Settings",
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ChatProvider:
    """Instantiate the adapter for ``provider_id`` from a settings snapshot."""

    try:
        provider = ProviderId(provider_id)
    except ValueError:
        raise UnknownProviderError.for_prefix(str(provider_id)) from None
    timeout = settings.request_timeout
    if provider is ProviderId.OLLAMA:
        return OllamaProvider(settings.ollama_url, http_client=http_client, timeout=timeout)
    if provider is ProviderId.OPENAI:
        return OpenAIProvider(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            http_client=http_client,
            timeout=timeout,
        )
    if provider is ProviderId.ANTHROPIC:
        return AnthropicProvider(
            settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
            api_version=settings.anthropic_version,
            max_tokens=settings.anthropic_max_tokens,
            http_client=http_client,
            timeout=timeout,
        )
    if provider is ProviderId.GEMINI:
        return GeminiProvider(
            settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            http_client=http_client,
            timeout=timeout,
        )
    return AzureOpenAIProvider(
        settings.azure_api_key,
        settings.azure_endpoint,
        deployments=settings.azure_deployment_list(),
        api_version=settings.azure_api_version,
        http_client=http_client,
        timeout=timeout,
    )


def resolve_provider(
    model_string: str,
    settings: "Settings",
    *,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[ChatProvider, str]:
    """Return the adapter and vendor model name for ``model_string``."""

    provider_id, model_name = parse_model_string(model_string)
    LOGGER.debug("Routing model %s to provider %s", model_string, provider_id.value)
    return create_provider(provider_id, settings, http_client=http_client), model_name


def all_providers(
    settings: "Settings",
    *,
    http_client: httpx.AsyncClient | None = None,
) -> list[ChatProvider]:
    return [create_provider(provider, settings, http_client=http_client) for provider in ProviderId]

"""Adapter for Azure OpenAI deployments."""

from __future__ import annotations

import httpx
from openai import AsyncAzureOpenAI

from .base import ProviderId
from .openai_provider import OpenAIProvider

__all__ = ["AzureOpenAIProvider", "DEFAULT_AZURE_API_VERSION"]

DEFAULT_AZURE_API_VERSION = "2024-02-01"


class AzureOpenAIProvider(OpenAIProvider):
    """Same wire format as OpenAI, routed to ``{endpoint}/openai/deployments/{model}``.

    The model name is the deployment name and authentication uses the
    ``api-key`` header instead of a bearer token.
    """

    provider_id = ProviderId.AZURE
    display_name = "Azure OpenAI"

    def __init__(
        self,
        api_key: str | None,
        endpoint: str | None,
        *,
        deployments: list[str] | None = None,
        api_version: str = DEFAULT_AZURE_API_VERSION,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(api_key, http_client=http_client, timeout=timeout)
        self._endpoint = endpoint
        self._deployments = list(deployments or [])
        self._api_version = api_version or DEFAULT_AZURE_API_VERSION

    async def list_models(self) -> list[str]:
        return list(self._deployments)

    def _build_client(self) -> AsyncAzureOpenAI:
        api_key = self._require(self._api_key, "azure_api_key", "API key")
        endpoint = self._require(self._endpoint, "azure_endpoint", "endpoint")
        return AsyncAzureOpenAI(
            api_key=api_key,
            azure_endpoint=endpoint.rstrip("/"),
            api_version=self._api_version,
            timeout=self._timeout,
            max_retries=0,
            http_client=self._http_client,
        )

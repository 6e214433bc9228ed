"""Provider contract shared by every chat backend."""

from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, ClassVar, Sequence

import httpx

from ..transcript.models import Turn
from .cancellation import AbortSignal
from .errors import ConfigurationError, TransportError
from .streaming import raise_for_status

__all__ = ["ProviderId", "DEFAULT_PROVIDER", "ChatProvider", "HttpChatProvider"]

LOGGER = logging.getLogger(__name__)


class ProviderId(str, Enum):
    """Closed set of provider prefixes accepted in model strings."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    AZURE = "azure"


DEFAULT_PROVIDER = ProviderId.OLLAMA


class ChatProvider(ABC):
    """Uniform capability contract implemented by each vendor adapter.

    ``generate_stream`` returns a single-consumer async iterator of text
    fragments. When ``signal`` fires the iterator raises
    :class:`~inkchat.llm.errors.StreamCancelled` instead of yielding more text.
    """

    provider_id: ClassVar[ProviderId]
    display_name: ClassVar[str]

    def model_id(self, model_name: str) -> str:
        return f"{self.provider_id.value}/{model_name}"

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return vendor model names (without the provider prefix)."""

    @abstractmethod
    def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        """Stream the completion for ``messages`` as text fragments."""

    def _require(self, value: str | None, setting: str, label: str) -> str:
        if value and value.strip():
            return value.strip()
        raise ConfigurationError(
            message=f"{self.display_name} {label} is not configured",
            provider=self.provider_id.value,
            setting=setting,
        )


class HttpChatProvider(ChatProvider):
    """Base for adapters that talk to their vendor through ``httpx`` directly."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout

    @contextlib.asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a temporary one closed on exit."""

        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    @contextlib.asynccontextmanager
    async def _post_stream(
        self,
        url: str,
        *,
        json: Any,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming POST; non-2xx responses raise :class:`TransportError`."""

        provider = self.provider_id.value
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    url,
                    json=json,
                    headers=headers,
                    params=params,
                    timeout=self._timeout,
                ) as response:
                    await raise_for_status(response, provider)
                    yield response
            except httpx.HTTPError as exc:
                LOGGER.debug("%s transport failure: %s", provider, exc)
                raise TransportError(
                    message=f"{self.display_name} request failed: {exc}",
                    provider=provider,
                ) from exc

"""Adapter for OpenAI chat completions, built on the official async SDK."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Sequence

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI

from ..transcript.models import Turn
from .base import ChatProvider, ProviderId
from .cancellation import AbortSignal
from .errors import TransportError

__all__ = ["OpenAIProvider", "build_messages", "translate_sdk_error"]

LOGGER = logging.getLogger(__name__)

DEFAULT_OPENAI_MODELS: tuple[str, ...] = (
    "gpt-5.2",
    "gpt-5.2-pro",
    "gpt-5-mini",
    "gpt-5-nano",
    "o4-mini",
    "o3",
    "o3-mini",
    "o3-pro",
)


class OpenAIProvider(ChatProvider):
    """Bearer-authenticated SSE streaming through :class:`openai.AsyncOpenAI`.

    The SDK client is created per request so a stream always uses the
    credentials that were current when it started. Retries are disabled; the
    timeout is whatever the settings ask for (``None`` waits indefinitely).
    """

    provider_id = ProviderId.OPENAI
    display_name = "OpenAI"

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._http_client = http_client
        self._timeout = timeout

    async def list_models(self) -> list[str]:
        return list(DEFAULT_OPENAI_MODELS)

    def _build_client(self) -> AsyncOpenAI:
        api_key = self._require(self._api_key, "openai_api_key", "API key")
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self._base_url or None,
            timeout=self._timeout,
            max_retries=0,
            http_client=self._http_client,
        )

    async def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        if signal is not None:
            signal.raise_if_aborted()
        client = self._build_client()
        payload: Dict[str, Any] = {
            "model": model,
            "messages": build_messages(messages),
            "temperature": temperature,
            "stream": True,
        }
        LOGGER.debug(
            "Starting %s stream via %s with %d message(s)", self.display_name, model, len(messages)
        )
        try:
            stream = await client.chat.completions.create(**payload)
            try:
                async for chunk in stream:
                    if signal is not None:
                        signal.raise_if_aborted()
                    text = _chunk_text(chunk)
                    if text:
                        yield text
            finally:
                await stream.close()
        except APIError as exc:
            raise translate_sdk_error(exc, self.provider_id.value, self.display_name) from exc
        finally:
            if self._http_client is None:
                await client.close()


def _chunk_text(chunk: Any) -> str | None:
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    return str(content) if content else None


def build_messages(messages: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Plain ``{role, content}`` messages; content-part arrays only when images exist."""

    payload: List[Dict[str, Any]] = []
    for turn in messages:
        if not turn.images:
            payload.append({"role": turn.role.value, "content": turn.content})
            continue
        parts: List[Dict[str, Any]] = [{"type": "text", "text": turn.content}]
        for image in turn.images:
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
                }
            )
        payload.append({"role": turn.role.value, "content": parts})
    return payload


def translate_sdk_error(exc: APIError, provider: str, display_name: str) -> TransportError:
    """Convert an SDK exception into a :class:`TransportError` carrying the vendor message."""

    if isinstance(exc, APIStatusError):
        body = exc.body
        detail = ""
        if isinstance(body, dict) and body.get("message"):
            detail = str(body["message"])
        return TransportError.from_status(provider, exc.status_code, detail or exc.message)
    if isinstance(exc, APIConnectionError):
        return TransportError(message=f"{display_name} request failed: {exc}", provider=provider)
    return TransportError(message=f"{display_name} error: {exc.message}", provider=provider)

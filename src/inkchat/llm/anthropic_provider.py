"""Adapter for the Anthropic Messages API (SSE streaming)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Sequence

import httpx

from ..transcript.models import Role, Turn
from .base import HttpChatProvider, ProviderId
from .cancellation import AbortSignal
from .errors import TransportError
from .streaming import decode_frame, iter_lines, iter_sse_data

__all__ = ["AnthropicProvider", "build_request"]

LOGGER = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODELS: tuple[str, ...] = (
    "claude-opus-4-6",
    "claude-sonnet-4-5",
    "claude-haiku-4-5",
)
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HttpChatProvider):
    provider_id = ProviderId.ANTHROPIC
    display_name = "Anthropic"

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://api.anthropic.com",
        api_version: str = DEFAULT_ANTHROPIC_VERSION,
        max_tokens: int = 4096,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._api_key = api_key
        self._base_url = base_url
        self._api_version = api_version or DEFAULT_ANTHROPIC_VERSION
        self._max_tokens = max_tokens

    async def list_models(self) -> list[str]:
        return list(DEFAULT_ANTHROPIC_MODELS)

    async def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        api_key = self._require(self._api_key, "anthropic_api_key", "API key")
        if signal is not None:
            signal.raise_if_aborted()
        payload = build_request(messages, model, temperature, max_tokens=self._max_tokens)
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self._api_version,
        }
        url = f"{self._base_url.rstrip('/')}/v1/messages"
        LOGGER.debug("Starting Anthropic stream via %s with %d message(s)", model, len(messages))
        async with self._post_stream(url, json=payload, headers=headers) as response:
            async for data in iter_sse_data(iter_lines(response.aiter_text())):
                if signal is not None:
                    signal.raise_if_aborted()
                event = decode_frame(data, provider=self.provider_id.value)
                if not isinstance(event, dict):
                    continue
                event_type = event.get("type")
                if event_type == "error":
                    error = event.get("error")
                    detail = error.get("message") if isinstance(error, dict) else error
                    raise TransportError(
                        message=f"Anthropic error: {detail or 'stream error'}",
                        provider=self.provider_id.value,
                    )
                if event_type == "message_stop":
                    break
                if event_type != "content_block_delta":
                    continue
                delta = event.get("delta")
                text = delta.get("text") if isinstance(delta, dict) else None
                if text:
                    yield str(text)


def build_request(
    messages: Sequence[Turn],
    model: str,
    temperature: float,
    *,
    max_tokens: int = 4096,
) -> Dict[str, Any]:
    """Split system turns into the top-level ``system`` field."""

    system_parts = [turn.content for turn in messages if turn.role is Role.SYSTEM and turn.content]
    chat_messages: List[Dict[str, Any]] = []
    for turn in messages:
        if turn.role is Role.SYSTEM:
            continue
        if not turn.images:
            chat_messages.append({"role": turn.role.value, "content": turn.content})
            continue
        parts: List[Dict[str, Any]] = [{"type": "text", "text": turn.content}]
        for image in turn.images:
            parts.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
                }
            )
        chat_messages.append({"role": turn.role.value, "content": parts})
    payload: Dict[str, Any] = {
        "model": model,
        "messages": chat_messages,
        "stream": True,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if system_parts:
        payload["system"] = "\n\n".join(system_parts)
    return payload

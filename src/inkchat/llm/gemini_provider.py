"""Adapter for Google Gemini ``streamGenerateContent`` (SSE streaming)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Sequence

import httpx

from ..transcript.models import Role, Turn
from .base import HttpChatProvider, ProviderId
from .cancellation import AbortSignal
from .errors import TransportError
from .streaming import decode_frame, iter_lines, iter_sse_data

__all__ = ["GeminiProvider", "build_contents"]

LOGGER = logging.getLogger(__name__)

DEFAULT_GEMINI_MODELS: tuple[str, ...] = (
    "gemini-3-pro-preview",
    "gemini-3-flash-preview",
)


class GeminiProvider(HttpChatProvider):
    provider_id = ProviderId.GEMINI
    display_name = "Gemini"

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com",
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._api_key = api_key
        self._base_url = base_url

    async def list_models(self) -> list[str]:
        return list(DEFAULT_GEMINI_MODELS)

    async def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        api_key = self._require(self._api_key, "gemini_api_key", "API key")
        if signal is not None:
            signal.raise_if_aborted()
        payload = {
            "contents": build_contents(messages),
            "generationConfig": {"temperature": temperature},
        }
        url = f"{self._base_url.rstrip('/')}/v1beta/models/{model}:streamGenerateContent"
        params = {"alt": "sse", "key": api_key}
        LOGGER.debug("Starting Gemini stream via %s with %d message(s)", model, len(messages))
        async with self._post_stream(url, json=payload, params=params) as response:
            async for data in iter_sse_data(iter_lines(response.aiter_text())):
                if signal is not None:
                    signal.raise_if_aborted()
                frame = decode_frame(data, provider=self.provider_id.value)
                if not isinstance(frame, dict):
                    continue
                error = frame.get("error")
                if isinstance(error, dict):
                    raise TransportError(
                        message=f"Gemini error: {error.get('message') or 'stream error'}",
                        provider=self.provider_id.value,
                        status_code=error.get("code") if isinstance(error.get("code"), int) else None,
                    )
                text = _first_part_text(frame)
                if text:
                    yield text


def _first_part_text(frame: Dict[str, Any]) -> str | None:
    candidates = frame.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    return str(text) if text else None


def build_contents(messages: Sequence[Turn]) -> List[Dict[str, Any]]:
    """``assistant`` becomes ``model``; every other role is sent as ``user``."""

    contents: List[Dict[str, Any]] = []
    for turn in messages:
        role = "model" if turn.role is Role.ASSISTANT else "user"
        parts: List[Dict[str, Any]] = [{"text": turn.content}]
        for image in turn.images:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})
        contents.append({"role": role, "parts": parts})
    return contents

"""Adapter for a local Ollama server (newline-delimited JSON streaming)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Sequence

import httpx

from ..transcript.models import Turn
from .base import HttpChatProvider, ProviderId
from .cancellation import AbortSignal
from .errors import TransportError
from .streaming import decode_frame, iter_lines

__all__ = ["OllamaProvider"]

LOGGER = logging.getLogger(__name__)


class OllamaProvider(HttpChatProvider):
    provider_id = ProviderId.OLLAMA
    display_name = "Ollama"

    def __init__(
        self,
        base_url: str | None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._base_url = base_url

    async def list_models(self) -> list[str]:
        """Fetch the installed models; an unreachable server yields an empty list."""

        if not self._base_url:
            return []
        url = f"{self._base_url.rstrip('/')}/api/tags"
        try:
            async with self._client() as client:
                response = await client.get(url, timeout=self._timeout)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.debug("Unable to list Ollama models from %s: %s", url, exc)
            return []
        models = payload.get("models") if isinstance(payload, dict) else None
        return [str(item["name"]) for item in models or [] if isinstance(item, dict) and item.get("name")]

    async def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        base_url = self._require(self._base_url, "ollama_url", "server URL")
        if signal is not None:
            signal.raise_if_aborted()
        payload = {
            "model": model,
            "messages": build_messages(messages),
            "stream": True,
            "options": {"temperature": temperature},
        }
        LOGGER.debug("Starting Ollama stream via %s with %d message(s)", model, len(messages))
        async with self._post_stream(f"{base_url.rstrip('/')}/api/chat", json=payload) as response:
            async for line in iter_lines(response.aiter_text()):
                if signal is not None:
                    signal.raise_if_aborted()
                if not line.strip():
                    continue
                frame = decode_frame(line, provider=self.provider_id.value)
                if not isinstance(frame, dict):
                    continue
                if frame.get("error"):
                    raise TransportError(
                        message=f"Ollama error: {frame['error']}",
                        provider=self.provider_id.value,
                    )
                message = frame.get("message")
                content = message.get("content") if isinstance(message, dict) else None
                if content:
                    yield str(content)
                if frame.get("done"):
                    break


def build_messages(messages: Sequence[Turn]) -> List[Dict[str, Any]]:
    payload: List[Dict[str, Any]] = []
    for turn in messages:
        entry: Dict[str, Any] = {"role": turn.role.value, "content": turn.content}
        if turn.images:
            entry["images"] = [image.data for image in turn.images]
        payload.append(entry)
    return payload

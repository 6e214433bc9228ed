"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, AsyncIterator, Callable, Collection, Iterable, Sequence

import httpx

from inkchat.llm.base import ChatProvider, ProviderId
from inkchat.llm.cancellation import AbortSignal
from inkchat.llm.factory import parse_model_string
from inkchat.transcript.models import Turn


class ScriptedProvider(ChatProvider):
    """Provider stub replaying canned fragments, one script per call.

    The last script is reused once the list runs out. Calls listed in
    ``hang_calls`` stay open after their fragments until the task is cancelled.
    """

    provider_id = ProviderId.OLLAMA
    display_name = "Scripted"

    def __init__(
        self,
        *scripts: Sequence[str],
        error: Exception | None = None,
        hang_calls: Collection[int] = (),
        provider_id: ProviderId = ProviderId.OLLAMA,
    ) -> None:
        self.provider_id = provider_id
        self.scripts = [list(script) for script in scripts] or [[]]
        self.error = error
        self.hang_calls = set(hang_calls)
        self.calls: list[SimpleNamespace] = []

    async def list_models(self) -> list[str]:
        return ["scripted"]

    async def generate_stream(
        self,
        messages: Sequence[Turn],
        model: str,
        temperature: float,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        index = len(self.calls)
        self.calls.append(SimpleNamespace(messages=list(messages), model=model, temperature=temperature))
        for fragment in self.scripts[min(index, len(self.scripts) - 1)]:
            if signal is not None:
                signal.raise_if_aborted()
            yield fragment
            await asyncio.sleep(0)
        if index in self.hang_calls:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error


def static_resolver(provider: ChatProvider, seen: list[str] | None = None) -> Callable[..., Any]:
    """Provider resolver that always routes to ``provider`` and records model strings."""

    def _resolve(model_string: str, settings: Any, *, http_client: Any = None) -> tuple[ChatProvider, str]:
        if seen is not None:
            seen.append(model_string)
        return provider, parse_model_string(model_string)[1]

    return _resolve


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the exact chunks given, like split network reads."""

    def __init__(self, chunks: Iterable[bytes | str]) -> None:
        self._chunks = [chunk.encode("utf-8") if isinstance(chunk, str) else chunk for chunk in chunks]

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk


def sse_body(*frames: Any, done: bool = False) -> list[str]:
    """Encode each frame as one ``data:`` event."""

    events = [f"data: {json.dumps(frame)}\n\n" for frame in frames]
    if done:
        events.append("data: [DONE]\n\n")
    return events


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingHandler:
    """MockTransport handler that records requests and replies with a fixed response factory."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self._respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)

"""Incremental decoding of line-based streaming protocols (NDJSON and SSE)."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

import httpx

from .errors import TransportError

__all__ = [
    "LineBuffer",
    "iter_lines",
    "iter_sse_data",
    "decode_frame",
    "raise_for_status",
]

LOGGER = logging.getLogger(__name__)
_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class LineBuffer:
    """Carry-over buffer that only releases newline-terminated lines.

    The text after the last newline of a chunk is never treated as a complete
    line; it becomes the prefix of the next chunk instead.
    """

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        if not chunk:
            return []
        *lines, self._pending = (self._pending + chunk).split("\n")
        return lines

    def flush(self) -> str:
        """Return and clear whatever is left once the stream has ended."""

        remainder, self._pending = self._pending, ""
        return remainder


async def iter_lines(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield complete lines from an async iterable of arbitrarily split text."""

    buffer = LineBuffer()
    async for chunk in chunks:
        for line in buffer.feed(chunk):
            yield line
    remainder = buffer.flush()
    if remainder.strip():
        yield remainder


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line, stopping at ``data: [DONE]``."""

    async for line in lines:
        stripped = line.strip()
        if not stripped.startswith(_SSE_DATA_PREFIX):
            continue
        payload = stripped[len(_SSE_DATA_PREFIX):].strip()
        if payload == _SSE_DONE:
            return
        if payload:
            yield payload


def decode_frame(payload: str, *, provider: str) -> Any | None:
    """Parse one JSON frame; malformed frames are logged and dropped."""

    try:
        return json.loads(payload)
    except ValueError:
        LOGGER.warning("Dropping malformed %s stream frame: %.200r", provider, payload)
        return None


async def raise_for_status(response: httpx.Response, provider: str) -> None:
    """Raise :class:`TransportError` with the vendor's message for non-2xx responses."""

    if response.is_success:
        return
    try:
        body = await response.aread()
    except httpx.HTTPError:
        body = b""
    detail = _error_detail(body) or response.reason_phrase
    raise TransportError.from_status(provider, response.status_code, detail)


def _error_detail(body: bytes) -> str:
    if not body:
        return ""
    try:
        payload = json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace").strip()[:500]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if payload.get("message"):
            return str(payload["message"])
    return ""

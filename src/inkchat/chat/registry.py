"""Per-document registry of in-flight streams."""

from __future__ import annotations

import logging

from ..llm.cancellation import AbortSignal

__all__ = ["StreamRegistry"]

LOGGER = logging.getLogger(__name__)


class StreamRegistry:
    """Maps a document key to the abort signal of its active stream.

    At most one stream is registered per document. All mutation happens on the
    event loop thread, so no locking is involved. Cancelling removes the entry
    straight away so a fresh submission can register while the aborted
    exchange is still unwinding; the stale exchange's later :meth:`release`
    is a no-op because it no longer owns the entry.
    """

    def __init__(self) -> None:
        self._active: dict[str, AbortSignal] = {}

    def register(self, key: str, signal: AbortSignal) -> None:
        if key in self._active:
            raise RuntimeError(f"Document {key!r} already has an active stream")
        self._active[key] = signal
        LOGGER.debug("Registered stream for %s", key)

    def release(self, key: str, signal: AbortSignal) -> None:
        if self._active.get(key) is signal:
            del self._active[key]
            LOGGER.debug("Released stream for %s", key)

    def cancel(self, key: str, reason: str = "cancelled") -> bool:
        signal = self._active.pop(key, None)
        if signal is None:
            return False
        signal.abort(reason)
        LOGGER.debug("Cancelled stream for %s (%s)", key, reason)
        return True

    def is_streaming(self, key: str) -> bool:
        return key in self._active

    def __len__(self) -> int:
        return len(self._active)

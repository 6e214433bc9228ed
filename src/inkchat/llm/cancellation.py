"""Cooperative abort signal threaded from the orchestrator down to the transport."""

from __future__ import annotations

import asyncio
import logging

from .errors import StreamCancelled

__all__ = ["AbortSignal"]

LOGGER = logging.getLogger(__name__)


class AbortSignal:
    """One-shot cancellation flag shared by every layer of a single exchange.

    Adapters poll :meth:`raise_if_aborted` between fragments. Tasks registered
    through :meth:`bind` are cancelled when the signal fires, which interrupts
    an HTTP read that is still waiting on the network.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._reason: str | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> str | None:
        return self._reason

    def bind(self, task: asyncio.Task) -> None:
        """Cancel ``task`` when the signal fires (immediately if it already has)."""

        if self.aborted:
            task.cancel()
            return
        self._tasks.append(task)

    def abort(self, reason: str = "cancelled") -> None:
        if self.aborted:
            return
        self._reason = reason
        self._aborted = True
        LOGGER.debug("Abort signal fired (%s); cancelling %d bound task(s)", reason, len(self._tasks))
        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks.clear()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise StreamCancelled()

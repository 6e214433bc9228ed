"""Typed publish/subscribe bus connecting the orchestrator to its host.

The orchestrator never talks to a UI directly: it publishes exchange
lifecycle events and user-facing notices, and whichever host is driving it
(the CLI, an editor integration, a test) subscribes to what it needs.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for every event published on the bus."""


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


@dataclass(slots=True)
class ExchangeStarted(Event):
    """A submission moved the document from idle to streaming.

    Attributes:
        document_key: Identity of the document being streamed into.
        model: Full ``provider/model`` string used for the exchange.
        temperature: Sampling temperature sent to the provider.
    """

    document_key: str
    model: str
    temperature: float


@dataclass(slots=True)
class ExchangeChunk(Event):
    """One text fragment was appended to the document."""

    document_key: str
    content: str


_QUIET_EVENT_TYPES.add(ExchangeChunk)


@dataclass(slots=True)
class ExchangeCompleted(Event):
    """The stream ended normally after producing at least one fragment."""

    document_key: str
    model: str
    fragment_count: int
    response_text: str


@dataclass(slots=True)
class ExchangeCanceled(Event):
    """The user stopped the stream; partial text stays in the document."""

    document_key: str
    fragment_count: int = 0


@dataclass(slots=True)
class ExchangeFailed(Event):
    """The exchange ended with an error.

    Attributes:
        document_key: Identity of the affected document.
        error: Human-readable description.
        error_code: Machine-readable code from :mod:`inkchat.llm.errors`.
    """

    document_key: str
    error: str
    error_code: str = ""


@dataclass(slots=True)
class NoticePosted(Event):
    """A message the host should show to the user."""

    message: str
    level: str = "info"


@dataclass(slots=True)
class DocumentRenamed(Event):
    document_key: str
    old_name: str
    new_name: str


class EventBus(Generic[E]):
    """Synchronous publish/subscribe dispatcher.

    Bound-method handlers are held through weak references so subscribers can
    be garbage collected without unsubscribing; plain functions and lambdas are
    held strongly. A handler that raises is logged and the remaining handlers
    still run. Not thread-safe: use it from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        LOGGER.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                LOGGER.debug("Unsubscribed %s from %s", _handler_name(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES
        if not handlers:
            if not is_quiet:
                LOGGER.debug("No handlers for event type %s", event_type.__name__)
            return
        if not is_quiet:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_indices: list[int] = []
        for index, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(index)
                continue
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for index in reversed(dead_indices):
            handlers.pop(index)

    def clear(self) -> None:
        self._handlers.clear()
        LOGGER.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: Any, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> "_HandlerRef":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref
        return self._ref()

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "ExchangeStarted",
    "ExchangeChunk",
    "ExchangeCompleted",
    "ExchangeCanceled",
    "ExchangeFailed",
    "NoticePosted",
    "DocumentRenamed",
]

"""Drive one chat exchange from document text to streamed reply."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

import httpx

from ..events import (
    DocumentRenamed,
    EventBus,
    ExchangeCanceled,
    ExchangeChunk,
    ExchangeCompleted,
    ExchangeFailed,
    ExchangeStarted,
    NoticePosted,
)
from ..llm.base import ChatProvider
from ..llm.cancellation import AbortSignal
from ..llm.errors import ChatError, EmptyResponseError, ErrorCode, StreamCancelled
from ..llm.factory import resolve_provider
from ..services.settings import Settings
from ..transcript.codec import count_turns, decode_with_images, encode_marker, trim_all_bodies
from ..transcript.frontmatter import DocumentOverrides
from ..transcript.images import AttachmentResolver, ImageExtractor
from ..transcript.models import Role, Turn
from .document import ChatDocument
from .naming import SUMMARY_INSTRUCTION, is_default_name, sanitize_title, summary_file_name
from .registry import StreamRegistry

__all__ = ["ExchangeStatus", "ExchangeResult", "ChatOrchestrator"]

LOGGER = logging.getLogger(__name__)

ProviderResolver = Callable[..., tuple[ChatProvider, str]]


class ExchangeStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True)
class ExchangeResult:
    """Outcome of a single submission."""

    document_key: str
    status: ExchangeStatus
    model: str = ""
    fragment_count: int = 0
    response_text: str = ""
    error: ChatError | None = None
    renamed_to: str | None = None


class ChatOrchestrator:
    """Coordinates codec, image extraction, provider routing and document writes.

    Each document moves ``idle -> streaming -> completed | cancelled | failed``
    and back to idle. Submitting while a document is streaming stops that
    stream instead of starting a second one.

    The opening assistant marker is written only when the first fragment
    arrives, so a request that fails or is stopped before producing text
    leaves the document untouched. Settings are snapshotted once per exchange.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings],
        *,
        registry: StreamRegistry | None = None,
        event_bus: EventBus | None = None,
        resolver: AttachmentResolver | None = None,
        http_client: httpx.AsyncClient | None = None,
        provider_resolver: ProviderResolver = resolve_provider,
    ) -> None:
        self._settings_provider = settings_provider
        self._registry = registry or StreamRegistry()
        self._event_bus = event_bus or EventBus()
        self._resolver = resolver
        self._http_client = http_client
        self._provider_resolver = provider_resolver

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def is_streaming(self, document_key: str) -> bool:
        return self._registry.is_streaming(document_key)

    def cancel(self, document_key: str) -> bool:
        """Stop the active stream for ``document_key``; ``False`` when idle."""

        return self._registry.cancel(document_key)

    async def submit(self, document: ChatDocument) -> ExchangeResult | None:
        """Run an exchange, or stop the running one (returning ``None``)."""

        key = document.key
        if self._registry.is_streaming(key):
            LOGGER.info("Stopping active stream for %s", key)
            self._registry.cancel(key)
            return None

        signal = AbortSignal()
        self._registry.register(key, signal)
        try:
            task = asyncio.create_task(self._run_exchange(document, signal))
            signal.bind(task)
            try:
                return await task
            except asyncio.CancelledError:
                # stopped before the exchange coroutine got to run
                if not (signal.aborted and task.cancelled()):
                    raise
                return self._cancelled(key, self._settings_provider().default_model, [])
        finally:
            self._registry.release(key, signal)

    async def _run_exchange(self, document: ChatDocument, signal: AbortSignal) -> ExchangeResult:
        key = document.key
        settings = self._settings_provider().snapshot()
        model_string = settings.default_model
        fragments: list[str] = []
        try:
            text = await document.read()
            overrides = DocumentOverrides.from_text(text)
            model_string = overrides.model or settings.default_model
            temperature = (
                overrides.temperature
                if overrides.temperature is not None
                else settings.default_temperature
            )
            extractor = ImageExtractor(self._resolver_for(document), http_client=self._http_client)
            turns = await decode_with_images(text, extractor)
            messages = _with_system_prompt(
                turns, overrides.system_prompt or settings.default_system_prompt
            )
            provider, model_name = self._provider_resolver(
                model_string, settings, http_client=self._http_client
            )
            model_string = provider.model_id(model_name)
            LOGGER.debug(
                "Exchange for %s: %d turn(s) via %s at temperature %s",
                key,
                len(messages),
                model_string,
                temperature,
            )
            self._event_bus.publish(
                ExchangeStarted(document_key=key, model=model_string, temperature=temperature)
            )

            async with contextlib.aclosing(
                provider.generate_stream(messages, model_name, temperature, signal)
            ) as stream:
                async for fragment in stream:
                    signal.raise_if_aborted()
                    if not fragments:
                        await self._open_assistant_turn(document, model_string, temperature)
                    fragments.append(fragment)
                    await document.append(fragment)
                    self._event_bus.publish(ExchangeChunk(document_key=key, content=fragment))
            signal.raise_if_aborted()

            if not fragments:
                raise EmptyResponseError(provider=provider.provider_id.value)
            await document.append("\n\n" + encode_marker(Role.USER))
        except (StreamCancelled, asyncio.CancelledError):
            if not signal.aborted:
                raise
            return self._cancelled(key, model_string, fragments)
        except (ChatError, OSError, UnicodeDecodeError) as exc:
            return self._fail(key, model_string, fragments, exc)

        response_text = "".join(fragments)
        result = ExchangeResult(
            document_key=key,
            status=ExchangeStatus.COMPLETED,
            model=model_string,
            fragment_count=len(fragments),
            response_text=response_text,
        )
        LOGGER.debug("Stream for %s completed with %d fragment(s)", key, len(fragments))
        self._event_bus.publish(
            ExchangeCompleted(
                document_key=key,
                model=model_string,
                fragment_count=len(fragments),
                response_text=response_text,
            )
        )
        if settings.auto_rename and self._should_rename(document, turns):
            result.renamed_to = await self._auto_rename(
                document,
                provider,
                model_name,
                temperature,
                [*messages, Turn(role=Role.ASSISTANT, content=response_text.strip())],
                signal,
            )
        return result

    def _cancelled(self, key: str, model_string: str, fragments: Sequence[str]) -> ExchangeResult:
        LOGGER.info("Stream for %s stopped after %d fragment(s)", key, len(fragments))
        self._event_bus.publish(ExchangeCanceled(document_key=key, fragment_count=len(fragments)))
        self._event_bus.publish(NoticePosted(message="Stopped", level="info"))
        return ExchangeResult(
            document_key=key,
            status=ExchangeStatus.CANCELLED,
            model=model_string,
            fragment_count=len(fragments),
            response_text="".join(fragments),
            error=StreamCancelled(),
        )

    def _fail(
        self,
        key: str,
        model_string: str,
        fragments: Sequence[str],
        exc: BaseException,
    ) -> ExchangeResult:
        if isinstance(exc, ChatError):
            error = exc
        else:
            error = ChatError(
                error_code=ErrorCode.DOCUMENT,
                message=f"Unable to access the document: {exc}",
            )
        LOGGER.warning("Exchange for %s failed: %s", key, error)
        self._event_bus.publish(
            ExchangeFailed(document_key=key, error=error.message, error_code=error.error_code)
        )
        self._event_bus.publish(NoticePosted(message=error.message, level="error"))
        return ExchangeResult(
            document_key=key,
            status=ExchangeStatus.FAILED,
            model=model_string,
            fragment_count=len(fragments),
            response_text="".join(fragments),
            error=error,
        )

    def _resolver_for(self, document: ChatDocument) -> AttachmentResolver | None:
        if self._resolver is not None:
            return self._resolver
        factory = getattr(document, "attachment_resolver", None)
        return factory() if callable(factory) else None

    async def _open_assistant_turn(
        self, document: ChatDocument, model_string: str, temperature: float
    ) -> None:
        current = await document.read()
        normalized = trim_all_bodies(current)
        if normalized != current:
            await document.write(normalized)
        await document.append(
            _separator_for(normalized) + encode_marker(Role.ASSISTANT, model_string, temperature)
        )

    @staticmethod
    def _should_rename(document: ChatDocument, turns: Sequence[Turn]) -> bool:
        return count_turns(turns, Role.ASSISTANT) == 1 and is_default_name(document.name)

    async def _auto_rename(
        self,
        document: ChatDocument,
        provider: ChatProvider,
        model_name: str,
        temperature: float,
        conversation: Sequence[Turn],
        signal: AbortSignal,
    ) -> str | None:
        try:
            summary = await _collect_summary(provider, model_name, temperature, conversation, signal)
        except (StreamCancelled, asyncio.CancelledError):
            if not signal.aborted:
                raise
            LOGGER.info("Auto-rename of %s skipped: stream stopped", document.key)
            return None
        except ChatError as exc:
            LOGGER.warning("Auto-rename summary for %s failed: %s", document.key, exc)
            return None

        title = sanitize_title(summary)
        if not title:
            LOGGER.debug("Auto-rename of %s skipped: empty summary", document.key)
            return None
        old_name = document.name
        new_name = summary_file_name(old_name, title)
        if document.sibling_exists(new_name):
            LOGGER.info("Auto-rename of %s skipped: %s already exists", document.key, new_name)
            return None
        try:
            await document.rename(new_name)
        except OSError as exc:
            LOGGER.warning("Unable to rename %s to %s: %s", old_name, new_name, exc)
            return None
        self._event_bus.publish(
            DocumentRenamed(document_key=document.key, old_name=old_name, new_name=new_name)
        )
        return new_name


async def _collect_summary(
    provider: ChatProvider,
    model_name: str,
    temperature: float,
    conversation: Sequence[Turn],
    signal: AbortSignal,
) -> str:
    messages = [Turn(role=turn.role, content=turn.content) for turn in conversation]
    messages.append(Turn(role=Role.USER, content=SUMMARY_INSTRUCTION))
    parts: list[str] = []
    async with contextlib.aclosing(
        provider.generate_stream(messages, model_name, temperature, signal)
    ) as stream:
        async for fragment in stream:
            parts.append(fragment)
    return "".join(parts)


def _with_system_prompt(turns: list[Turn], system_prompt: str | None) -> list[Turn]:
    prompt = (system_prompt or "").strip()
    if not prompt or any(turn.role is Role.SYSTEM for turn in turns):
        return list(turns)
    return [Turn(role=Role.SYSTEM, content=prompt), *turns]


def _separator_for(text: str) -> str:
    """Blank-line separation between the last body and a new marker."""

    if not text or text.endswith("\n\n"):
        return ""
    if text.endswith("\n"):
        return "\n"
    return "\n\n"

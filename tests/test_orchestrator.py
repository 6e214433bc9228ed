"""Tests for :mod:`inkchat.chat.orchestrator`."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from inkchat.chat.document import FileChatDocument, MemoryChatDocument
from inkchat.chat.naming import SUMMARY_INSTRUCTION
from inkchat.chat.orchestrator import ChatOrchestrator, ExchangeStatus
from inkchat.events import (
    DocumentRenamed,
    EventBus,
    ExchangeCanceled,
    ExchangeChunk,
    ExchangeCompleted,
    ExchangeFailed,
    ExchangeStarted,
    NoticePosted,
)
from inkchat.llm.base import ProviderId
from inkchat.llm.errors import ErrorCode, TransportError
from inkchat.services.settings import Settings
from inkchat.transcript.codec import encode_marker, encode_turn
from inkchat.transcript.models import Role, Turn

from tests.helpers import ScriptedProvider, static_resolver

USER_DOC = "```turn\nrole: user\n```\nHi\n"
ASSISTANT_MARKER = encode_marker(Role.ASSISTANT, "ollama/llama3", 0.7)
ONE_REPLY_DOC = (
    encode_turn(Turn(role=Role.USER, content="Hi"))
    + encode_turn(Turn(role=Role.ASSISTANT, content="Hello!", model="ollama/llama3", temperature=0.7))
    + encode_marker(Role.USER)
    + "Tell me about cats\n"
)


class _Recorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Any] = []
        for event_type in (
            ExchangeStarted,
            ExchangeChunk,
            ExchangeCompleted,
            ExchangeCanceled,
            ExchangeFailed,
            NoticePosted,
            DocumentRenamed,
        ):
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


def _orchestrator(
    provider: ScriptedProvider,
    settings: Settings | None = None,
    *,
    seen: list[str] | None = None,
) -> tuple[ChatOrchestrator, _Recorder]:
    active = settings or Settings(default_model="ollama/llama3", auto_rename=False)
    bus: EventBus = EventBus()
    recorder = _Recorder(bus)
    orchestrator = ChatOrchestrator(
        lambda: active,
        event_bus=bus,
        provider_resolver=static_resolver(provider, seen),
    )
    return orchestrator, recorder


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.asyncio
async def test_successful_exchange_writes_markers_around_the_reply() -> None:
    provider = ScriptedProvider(["Hel", "lo"])
    orchestrator, recorder = _orchestrator(provider)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.COMPLETED
    assert result.fragment_count == 2
    assert result.response_text == "Hello"
    assert document.text == USER_DOC + "\n" + ASSISTANT_MARKER + "Hello" + "\n\n" + encode_marker(Role.USER)
    assert [chunk.content for chunk in recorder.of(ExchangeChunk)] == ["Hel", "lo"]
    (completed,) = recorder.of(ExchangeCompleted)
    assert completed.fragment_count == 2
    assert not orchestrator.is_streaming(document.key)
    assert provider.calls[0].model == "llama3"
    assert provider.calls[0].messages == [Turn(role=Role.USER, content="Hi")]


@pytest.mark.asyncio
async def test_bodies_are_trimmed_when_the_first_fragment_arrives() -> None:
    provider = ScriptedProvider(["Sure"])
    orchestrator, _ = _orchestrator(provider)
    document = MemoryChatDocument(text="```turn\nrole: user\n```\n\n\nHi\n\n\n", title="Notes")

    await orchestrator.submit(document)

    assert document.text.startswith(USER_DOC + "\n" + ASSISTANT_MARKER + "Sure")


@pytest.mark.asyncio
async def test_empty_stream_fails_and_leaves_document_untouched() -> None:
    untrimmed = "```turn\nrole: user\n```\n\nHi\n\n\n"
    orchestrator, recorder = _orchestrator(ScriptedProvider([]))
    document = MemoryChatDocument(text=untrimmed, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.FAILED
    assert result.error is not None and result.error.error_code == ErrorCode.EMPTY_RESPONSE
    assert document.text == untrimmed
    assert not document.dirty
    assert [notice.level for notice in recorder.of(NoticePosted)] == ["error"]


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_touching_the_document() -> None:
    bus: EventBus = EventBus()
    recorder = _Recorder(bus)
    settings = Settings(default_model="openai/gpt-5-mini", openai_api_key="", auto_rename=False)
    orchestrator = ChatOrchestrator(lambda: settings, event_bus=bus)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.FAILED
    assert result.error is not None and result.error.error_code == ErrorCode.CONFIGURATION
    assert document.text == USER_DOC
    (notice,) = recorder.of(NoticePosted)
    assert notice.message == "OpenAI API key is not configured"
    (failed,) = recorder.of(ExchangeFailed)
    assert failed.error_code == ErrorCode.CONFIGURATION


@pytest.mark.asyncio
async def test_unknown_provider_prefix_fails_the_exchange() -> None:
    settings = Settings(default_model="mistral/large", auto_rename=False)
    orchestrator = ChatOrchestrator(lambda: settings)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.FAILED
    assert result.error is not None and result.error.error_code == ErrorCode.UNKNOWN_PROVIDER
    assert document.text == USER_DOC


@pytest.mark.asyncio
async def test_failure_mid_stream_keeps_partial_text_without_closing_marker() -> None:
    provider = ScriptedProvider(["Par"], error=TransportError(message="Anthropic error: Overloaded"))
    orchestrator, recorder = _orchestrator(provider)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.FAILED
    assert result.fragment_count == 1
    assert document.text == USER_DOC + "\n" + ASSISTANT_MARKER + "Par"
    assert recorder.of(NoticePosted)[-1].message == "Anthropic error: Overloaded"


@pytest.mark.asyncio
async def test_stop_after_first_fragment_then_resubmit() -> None:
    provider = ScriptedProvider(["Hello"], ["Again"], hang_calls={0})
    orchestrator, recorder = _orchestrator(provider)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    first = asyncio.create_task(orchestrator.submit(document))
    await _wait_for(lambda: bool(recorder.of(ExchangeChunk)))

    toggled = await orchestrator.submit(document)

    assert toggled is None
    assert not orchestrator.is_streaming(document.key)
    result = await asyncio.wait_for(first, 1.0)
    assert result is not None
    assert result.status is ExchangeStatus.CANCELLED
    assert result.fragment_count == 1
    assert document.text == USER_DOC + "\n" + ASSISTANT_MARKER + "Hello"
    (canceled,) = recorder.of(ExchangeCanceled)
    assert canceled.fragment_count == 1
    assert recorder.of(NoticePosted)[-1].message == "Stopped"
    assert not recorder.of(ExchangeFailed)

    second = await orchestrator.submit(document)

    assert second is not None
    assert second.status is ExchangeStatus.COMPLETED
    assert document.text.endswith("Again\n\n" + encode_marker(Role.USER))
    assert [turn.role for turn in provider.calls[1].messages] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_stop_before_any_fragment_leaves_document_untouched() -> None:
    provider = ScriptedProvider([], hang_calls={0})
    orchestrator, recorder = _orchestrator(provider)
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    task = asyncio.create_task(orchestrator.submit(document))
    await _wait_for(lambda: bool(provider.calls))

    assert orchestrator.cancel(document.key) is True
    result = await asyncio.wait_for(task, 1.0)

    assert result is not None
    assert result.status is ExchangeStatus.CANCELLED
    assert result.fragment_count == 0
    assert document.text == USER_DOC
    assert orchestrator.cancel(document.key) is False


@pytest.mark.asyncio
async def test_streams_are_independent_per_document() -> None:
    provider = ScriptedProvider(["A"], hang_calls={0})
    orchestrator, _ = _orchestrator(provider)
    first_doc = MemoryChatDocument(text=USER_DOC, title="One")
    second_doc = MemoryChatDocument(text=USER_DOC, title="Two")

    pending = asyncio.create_task(orchestrator.submit(first_doc))
    await _wait_for(lambda: bool(provider.calls))
    result = await orchestrator.submit(second_doc)

    assert result is not None and result.status is ExchangeStatus.COMPLETED
    assert orchestrator.is_streaming(first_doc.key)
    orchestrator.cancel(first_doc.key)
    cancelled = await asyncio.wait_for(pending, 1.0)
    assert cancelled is not None and cancelled.status is ExchangeStatus.CANCELLED


@pytest.mark.asyncio
async def test_frontmatter_overrides_model_temperature_and_system_prompt() -> None:
    provider = ScriptedProvider(["Oui"], provider_id=ProviderId.ANTHROPIC)
    seen: list[str] = []
    orchestrator, _ = _orchestrator(provider, seen=seen)
    text = (
        "---\nmodel: anthropic/claude-sonnet-4-5\ntemperature: 0.2\nsystem: Answer in French\n---\n"
        + USER_DOC
    )
    document = MemoryChatDocument(text=text, title="Notes")

    await orchestrator.submit(document)

    assert seen == ["anthropic/claude-sonnet-4-5"]
    call = provider.calls[0]
    assert call.model == "claude-sonnet-4-5"
    assert call.temperature == pytest.approx(0.2)
    assert call.messages[0] == Turn(role=Role.SYSTEM, content="Answer in French")
    assert encode_marker(Role.ASSISTANT, "anthropic/claude-sonnet-4-5", 0.2) in document.text


@pytest.mark.asyncio
async def test_default_system_prompt_is_prepended_unless_document_has_one() -> None:
    provider = ScriptedProvider(["ok"])
    settings = Settings(default_model="ollama/llama3", default_system_prompt="Be helpful", auto_rename=False)
    orchestrator, _ = _orchestrator(provider, settings)

    await orchestrator.submit(MemoryChatDocument(text=USER_DOC, title="Notes"))
    own_system = encode_turn(Turn(role=Role.SYSTEM, content="Be terse")) + USER_DOC
    await orchestrator.submit(MemoryChatDocument(text=own_system, title="Notes"))

    assert provider.calls[0].messages[0] == Turn(role=Role.SYSTEM, content="Be helpful")
    assert [turn.content for turn in provider.calls[1].messages] == ["Be terse", "Hi"]


@pytest.mark.asyncio
async def test_file_document_exchange_attaches_vault_images(tmp_path: Path) -> None:
    (tmp_path / "cat.png").write_bytes(b"png-bytes")
    note = tmp_path / "Notes.md"
    note.write_text("```turn\nrole: user\n```\nWhat is this? ![[cat.png]]\n", encoding="utf-8")
    provider = ScriptedProvider(["A cat."])
    orchestrator, _ = _orchestrator(provider)

    result = await orchestrator.submit(FileChatDocument(note))

    assert result is not None and result.status is ExchangeStatus.COMPLETED
    (message,) = provider.calls[0].messages
    assert len(message.images) == 1
    assert message.images[0].mime_type == "image/png"
    assert note.read_text(encoding="utf-8").endswith("A cat.\n\n" + encode_marker(Role.USER))


class TestAutoRename:
    @pytest.mark.asyncio
    async def test_second_reply_in_default_named_chat_triggers_summary(self) -> None:
        provider = ScriptedProvider(["Cats ", "are great"], ["Cats: and dogs?\n"])
        settings = Settings(default_model="ollama/llama3")
        orchestrator, recorder = _orchestrator(provider, settings)
        document = MemoryChatDocument(
            text=ONE_REPLY_DOC, title="Chat - 2024-01-01 3", siblings={"Chat - 2024-01-01 3"}
        )

        result = await orchestrator.submit(document)

        assert result is not None
        assert result.status is ExchangeStatus.COMPLETED
        assert result.renamed_to == "2024-01-01 Cats and dogs"
        assert document.title == "2024-01-01 Cats and dogs"
        summary_call = provider.calls[1]
        assert summary_call.messages[-1] == Turn(role=Role.USER, content=SUMMARY_INSTRUCTION)
        assert summary_call.messages[-2] == Turn(role=Role.ASSISTANT, content="Cats are great")
        assert "Cats: and dogs?" not in document.text
        (renamed,) = recorder.of(DocumentRenamed)
        assert renamed.old_name == "Chat - 2024-01-01 3"

    @pytest.mark.asyncio
    async def test_custom_name_is_left_alone(self) -> None:
        provider = ScriptedProvider(["Cats are great"], ["Cats"])
        orchestrator, _ = _orchestrator(provider, Settings(default_model="ollama/llama3"))
        document = MemoryChatDocument(text=ONE_REPLY_DOC, title="Project notes")

        result = await orchestrator.submit(document)

        assert result is not None and result.renamed_to is None
        assert len(provider.calls) == 1
        assert document.title == "Project notes"

    @pytest.mark.asyncio
    async def test_first_reply_does_not_trigger_summary(self) -> None:
        provider = ScriptedProvider(["Hello"], ["Greeting"])
        orchestrator, _ = _orchestrator(provider, Settings(default_model="ollama/llama3"))
        document = MemoryChatDocument(text=USER_DOC, title="Chat - 2024-01-01")

        await orchestrator.submit(document)

        assert len(provider.calls) == 1
        assert document.title == "Chat - 2024-01-01"

    @pytest.mark.asyncio
    async def test_existing_target_name_skips_rename(self) -> None:
        provider = ScriptedProvider(["More"], ["Cats"])
        orchestrator, recorder = _orchestrator(provider, Settings(default_model="ollama/llama3"))
        document = MemoryChatDocument(
            text=ONE_REPLY_DOC, title="Chat - 2024-01-01", siblings={"2024-01-01 Cats"}
        )

        result = await orchestrator.submit(document)

        assert result is not None and result.renamed_to is None
        assert len(provider.calls) == 2
        assert document.title == "Chat - 2024-01-01"
        assert not recorder.of(DocumentRenamed)

    @pytest.mark.asyncio
    async def test_disabled_setting_skips_summary(self) -> None:
        provider = ScriptedProvider(["More"], ["Cats"])
        orchestrator, _ = _orchestrator(provider, Settings(default_model="ollama/llama3", auto_rename=False))
        document = MemoryChatDocument(text=ONE_REPLY_DOC, title="Chat - 2024-01-01")

        await orchestrator.submit(document)

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_file_document_is_renamed_on_disk(self, tmp_path: Path) -> None:
        note = tmp_path / "Chat - 2024-01-01.md"
        note.write_text(ONE_REPLY_DOC, encoding="utf-8")
        provider = ScriptedProvider(["More"], ["Feline facts"])
        orchestrator, _ = _orchestrator(provider, Settings(default_model="ollama/llama3"))
        document = FileChatDocument(note)

        result = await orchestrator.submit(document)

        assert result is not None and result.renamed_to == "2024-01-01 Feline facts"
        assert not note.exists()
        assert (tmp_path / "2024-01-01 Feline facts.md").exists()
        assert document.name == "2024-01-01 Feline facts"


@pytest.mark.asyncio
async def test_bare_model_name_is_recorded_with_its_provider_prefix() -> None:
    provider = ScriptedProvider(["Hi there"])
    orchestrator, _ = _orchestrator(provider, Settings(default_model="llama3", auto_rename=False))
    document = MemoryChatDocument(text=USER_DOC, title="Notes")

    result = await orchestrator.submit(document)

    assert result is not None and result.model == "ollama/llama3"
    assert provider.calls[0].model == "llama3"
    assert ASSISTANT_MARKER in document.text


@pytest.mark.asyncio
async def test_malformed_image_url_does_not_break_the_exchange() -> None:
    provider = ScriptedProvider(["No image"])
    orchestrator, recorder = _orchestrator(provider)
    document = MemoryChatDocument(
        text="```turn\nrole: user\n```\nlook ![x](https:///x.png)\n", title="Notes"
    )

    result = await orchestrator.submit(document)

    assert result is not None
    assert result.status is ExchangeStatus.COMPLETED
    assert provider.calls[0].messages[0].images == []
    assert not recorder.of(ExchangeFailed)


@pytest.mark.asyncio
async def test_non_utf8_note_fails_with_a_document_error(tmp_path: Path) -> None:
    note = tmp_path / "Notes.md"
    raw = "```turn\nrole: user\n```\ncaf\xe9\n".encode("latin-1")
    note.write_bytes(raw)
    orchestrator, recorder = _orchestrator(ScriptedProvider(["unused"]))

    result = await orchestrator.submit(FileChatDocument(note))

    assert result is not None
    assert result.status is ExchangeStatus.FAILED
    assert result.error is not None and result.error.error_code == ErrorCode.DOCUMENT
    assert note.read_bytes() == raw
    (failed,) = recorder.of(ExchangeFailed)
    assert failed.error_code == ErrorCode.DOCUMENT

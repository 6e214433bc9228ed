"""Tests for the turn codec and document frontmatter."""

from __future__ import annotations

import pytest

from inkchat.transcript import (
    ChatImage,
    DocumentOverrides,
    Role,
    Turn,
    count_turns,
    decode,
    decode_with_images,
    encode_marker,
    encode_turn,
    has_any_marker,
    read_frontmatter,
    scan_markers,
    trim_all_bodies,
)


class _StubExtractor:
    def __init__(self, images: list[ChatImage]) -> None:
        self._images = images
        self.bodies: list[str] = []

    async def extract(self, body: str) -> list[ChatImage]:
        self.bodies.append(body)
        return list(self._images)


def test_encode_marker_layout() -> None:
    assert encode_marker(Role.USER) == "```turn\nrole: user\n```\n\n"
    assert (
        encode_marker("assistant", "openai/gpt-5-mini", 0.7)
        == "```turn\nrole: assistant\nmodel: openai/gpt-5-mini\ntemp: 0.7\n```\n\n"
    )
    assert encode_marker(Role.ASSISTANT, None, 1) == "```turn\nrole: assistant\ntemp: 1.0\n```\n\n"


def test_encoded_turns_decode_back_to_the_same_turns() -> None:
    turns = [
        Turn(role=Role.SYSTEM, content="Be brief."),
        Turn(role=Role.USER, content="Hello there"),
        Turn(
            role=Role.ASSISTANT,
            content="Hi!\n\nHow can I help?",
            model="openai/gpt-5-mini",
            temperature=0.7,
        ),
        Turn(role=Role.USER, content="Explain tides"),
    ]

    text = "".join(encode_turn(turn) for turn in turns)

    assert decode(text) == turns


def test_prefix_before_first_marker_is_ignored() -> None:
    text = "# Notes\n\nSome context.\n\n" + encode_marker(Role.USER) + "Question?\n"

    turns = decode(text)

    assert [(turn.role, turn.content) for turn in turns] == [(Role.USER, "Question?")]


def test_document_without_markers_has_no_turns() -> None:
    assert decode("plain note\n") == []
    assert not has_any_marker("plain note\n")
    assert has_any_marker(encode_marker(Role.USER))


def test_blank_bodies_are_skipped() -> None:
    text = encode_marker(Role.USER) + "\n  \n" + encode_marker(Role.ASSISTANT) + "Reply\n"

    turns = decode(text)

    assert len(turns) == 1
    assert turns[0].role is Role.ASSISTANT


@pytest.mark.asyncio
async def test_blank_body_with_an_image_still_produces_a_turn() -> None:
    image = ChatImage(data="aGk=", mime_type="image/png")
    extractor = _StubExtractor([image])

    turns = await decode_with_images(encode_marker(Role.USER) + "\n", extractor)

    assert len(turns) == 1
    assert turns[0].content == ""
    assert turns[0].images == [image]


@pytest.mark.asyncio
async def test_decode_with_images_passes_each_body_to_the_extractor() -> None:
    extractor = _StubExtractor([])
    text = encode_marker(Role.USER) + "one ![[a.png]]\n" + encode_marker(Role.ASSISTANT) + "two\n"

    turns = await decode_with_images(text, extractor)

    assert [turn.content for turn in turns] == ["one ![[a.png]]", "two"]
    assert extractor.bodies == ["\none ![[a.png]]\n", "\ntwo\n"]


@pytest.mark.parametrize(
    "metadata",
    [
        "role: [user\n",
        "just some text\n",
        "role: robot\n",
        "model: openai/gpt-5-mini\n",
        "",
    ],
)
def test_markers_with_unusable_metadata_are_skipped(metadata: str) -> None:
    text = "```turn\n" + metadata + "```\nignored body\n" + encode_marker(Role.USER) + "kept\n"

    turns = decode(text)

    assert [(turn.role, turn.content) for turn in turns] == [(Role.USER, "kept")]


def test_unclosed_marker_stays_in_the_previous_body() -> None:
    text = "```turn\nrole: user\n```\nfirst\n```turn\nrole: assistant\n"

    turns = decode(text)

    assert len(turns) == 1
    assert turns[0].role is Role.USER
    assert turns[0].content.startswith("first")
    assert "role: assistant" in turns[0].content


def test_code_fences_inside_bodies_are_not_markers() -> None:
    body = "Try this:\n\n```python\nprint('hi')\n```\n\nThen run it."
    text = encode_marker(Role.ASSISTANT) + body + "\n" + encode_marker(Role.USER) + "Thanks\n"

    turns = decode(text)

    assert [turn.content for turn in turns] == [body, "Thanks"]


def test_legacy_fence_tag_is_accepted() -> None:
    text = "```iter\nrole: user\n```\nold style\n"

    assert decode(text) == [Turn(role=Role.USER, content="old style")]


def test_role_and_temperature_coercion() -> None:
    text = (
        "```turn\nrole: Assistant\ntemp: 1.5\n```\nhot\n"
        "```turn\nrole: assistant\ntemp: warm\n```\nvague\n"
        "```turn\nrole: assistant\ntemp: -2\n```\ncold\n"
    )

    turns = decode(text)

    assert [turn.temperature for turn in turns] == [1.0, None, 0.0]
    assert all(turn.role is Role.ASSISTANT for turn in turns)


def test_scan_markers_reports_body_ranges() -> None:
    text = "intro\n" + encode_marker(Role.USER) + "body\n"

    (span,) = scan_markers(text)

    assert text[span.start : span.end] == encode_marker(Role.USER)[:-1]
    assert text[span.body_start : span.body_end] == "\nbody\n"
    assert span.metadata == "role: user\n"


def test_trim_all_bodies_strips_outer_blank_lines_only() -> None:
    text = (
        "Title\n\n"
        + encode_marker(Role.USER)
        + "\n\nFirst paragraph\n\nSecond paragraph\n\n\n"
        + encode_marker(Role.ASSISTANT)
        + "\n  \nAnswer\n\n"
    )

    trimmed = trim_all_bodies(text)

    assert trimmed == (
        "Title\n\n"
        "```turn\nrole: user\n```\n"
        "First paragraph\n\nSecond paragraph\n"
        "```turn\nrole: assistant\n```\n"
        "Answer\n"
    )
    assert trim_all_bodies(trimmed) == trimmed
    assert decode(trimmed) == decode(text)


def test_trim_leaves_markerless_text_alone() -> None:
    text = "\n\nnothing to see\n\n"

    assert trim_all_bodies(text) == text


def test_crlf_documents_decode_and_trim() -> None:
    text = "```turn\r\nrole: user\r\nmodel: ollama/llama3\r\n```\r\n\r\nHello\r\n\r\n"

    assert decode(text) == [Turn(role=Role.USER, content="Hello", model="ollama/llama3")]
    trimmed = trim_all_bodies(text)
    assert trimmed == "```turn\r\nrole: user\r\nmodel: ollama/llama3\r\n```\r\nHello\r\n"
    assert decode(trimmed) == decode(text)


def test_count_turns_by_role() -> None:
    turns = [
        Turn(role=Role.USER, content="a"),
        Turn(role=Role.ASSISTANT, content="b"),
        Turn(role=Role.USER, content="c"),
    ]

    assert count_turns(turns, Role.USER) == 2
    assert count_turns(turns, "assistant") == 1
    assert count_turns(turns, Role.SYSTEM) == 0


def test_turn_as_dict_omits_empty_fields() -> None:
    turn = Turn(role=Role.ASSISTANT, content="hi", model="ollama/llama3")

    assert turn.as_dict() == {"role": "assistant", "content": "hi", "model": "ollama/llama3"}


def test_role_parse_rejects_unknown_values() -> None:
    assert Role.parse(" USER ") is Role.USER
    assert Role.parse("robot") is None
    assert Role.parse(None) is None


def test_frontmatter_overrides() -> None:
    text = (
        "---\nmodel: anthropic/claude-sonnet-4-5\ntemperature: 0.2\nsystem: Answer in French\n---\n"
        + encode_marker(Role.USER)
        + "Bonjour\n"
    )

    overrides = DocumentOverrides.from_text(text)

    assert overrides.model == "anthropic/claude-sonnet-4-5"
    assert overrides.temperature == pytest.approx(0.2)
    assert overrides.system_prompt == "Answer in French"
    assert [turn.content for turn in decode(text)] == ["Bonjour"]


@pytest.mark.parametrize(
    "text",
    [
        "no frontmatter\n",
        "---\nmodel: x\n",
        "---\nmodel: [broken\n---\n",
        "intro\n---\nmodel: x\n---\n",
    ],
)
def test_missing_or_broken_frontmatter_yields_nothing(text: str) -> None:
    assert read_frontmatter(text) == {}
    assert DocumentOverrides.from_text(text) == DocumentOverrides()


def test_frontmatter_temperature_is_clamped_and_validated() -> None:
    assert DocumentOverrides.from_text("---\ntemp: 3\n---\n").temperature == 1.0
    assert DocumentOverrides.from_text("---\ntemperature: high\n---\n").temperature is None

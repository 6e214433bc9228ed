"""Turn codec: encode and decode conversation turns embedded in document text.

A turn opens with a marker, a fenced block whose info string is the reserved
tag, holding ``key: value`` metadata::

    ```turn
    role: assistant
    model: openai/gpt-5-mini
    temp: 0.7
    ```
    body text...

The body runs until the next marker or the end of the document. Text before
the first marker (frontmatter, titles) belongs to no turn.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .models import Role, Turn

__all__ = [
    "FENCE_TAG",
    "MarkerSpan",
    "scan_markers",
    "parse_metadata",
    "decode",
    "decode_with_images",
    "encode_marker",
    "encode_turn",
    "has_any_marker",
    "trim_all_bodies",
    "count_turns",
]

LOGGER = logging.getLogger(__name__)

FENCE_TAG = "turn"
_LEGACY_FENCE_TAGS: tuple[str, ...] = ("iter",)
_FENCE_OPEN = re.compile(
    r"^ {0,3}```[ \t]*(?:" + "|".join((FENCE_TAG, *_LEGACY_FENCE_TAGS)) + r")[ \t]*$"
)
_FENCE_CLOSE = re.compile(r"^ {0,3}```[ \t]*$")


@dataclass(slots=True, frozen=True)
class MarkerSpan:
    """Offsets of one marker block and the body that follows it."""

    start: int
    end: int
    metadata: str
    body_end: int

    @property
    def body_start(self) -> int:
        return self.end


def _split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, keeping line terminators."""

    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def scan_markers(text: str) -> list[MarkerSpan]:
    """Locate every closed marker block in document order.

    Two passes: find opening fences and their closing fence, then assign each
    marker the body that extends to the next marker. An opening fence without
    a closing fence is not a marker; it stays part of the preceding body.
    """

    lines = _split_lines(text)
    offsets: list[int] = []
    position = 0
    for line in lines:
        offsets.append(position)
        position += len(line)

    found: list[tuple[int, int, str]] = []
    index = 0
    while index < len(lines):
        if not _FENCE_OPEN.match(lines[index].rstrip("\r\n")):
            index += 1
            continue
        close = index + 1
        while close < len(lines) and not _FENCE_CLOSE.match(lines[close].rstrip("\r\n")):
            close += 1
        if close >= len(lines):
            break
        metadata = "".join(lines[index + 1 : close])
        found.append((offsets[index], offsets[close] + len(lines[close]), metadata))
        index = close + 1

    spans: list[MarkerSpan] = []
    for position, (start, end, metadata) in enumerate(found):
        body_end = found[position + 1][0] if position + 1 < len(found) else len(text)
        spans.append(MarkerSpan(start=start, end=end, metadata=metadata, body_end=body_end))
    return spans


def parse_metadata(raw: str) -> Dict[str, Any]:
    """Parse marker metadata; anything unparsable degrades to an empty mapping."""

    if not raw.strip():
        return {}
    parser = YAML(typ="safe")
    try:
        payload = parser.load(raw)
    except YAMLError as exc:
        LOGGER.debug("Ignoring unparsable turn metadata: %s", exc)
        return {}
    if not isinstance(payload, dict):
        return {}
    return {str(key): value for key, value in payload.items()}


def _coerce_temperature(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, number))


def _coerce_model(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _iter_blocks(text: str) -> Iterator[tuple[Role, Dict[str, Any], str]]:
    for span in scan_markers(text):
        metadata = parse_metadata(span.metadata)
        role = Role.parse(metadata.get("role"))
        if role is None:
            LOGGER.debug("Skipping marker without a usable role at offset %d", span.start)
            continue
        yield role, metadata, text[span.body_start : span.body_end]


def _build_turn(role: Role, metadata: Dict[str, Any], body: str, images: list) -> Optional[Turn]:
    content = body.strip()
    if not content and not images:
        return None
    return Turn(
        role=role,
        content=content,
        model=_coerce_model(metadata.get("model")),
        temperature=_coerce_temperature(metadata.get("temp")),
        images=list(images),
    )


def decode(text: str) -> list[Turn]:
    """Decode the transcript without resolving image references."""

    turns: list[Turn] = []
    for role, metadata, body in _iter_blocks(text):
        turn = _build_turn(role, metadata, body, [])
        if turn is not None:
            turns.append(turn)
    return turns


async def decode_with_images(text: str, extractor: Any) -> list[Turn]:
    """Decode the transcript and attach the images each body references.

    ``extractor`` is an :class:`~inkchat.transcript.images.ImageExtractor` (or
    anything with an ``async extract(body)`` method). A turn whose body is blank
    is still emitted when it carries at least one image.
    """

    turns: list[Turn] = []
    for role, metadata, body in _iter_blocks(text):
        images = await extractor.extract(body) if extractor is not None else []
        turn = _build_turn(role, metadata, body, images)
        if turn is not None:
            turns.append(turn)
    return turns


def _format_temperature(value: float) -> str:
    return str(float(value))


def encode_marker(
    role: Role | str,
    model: str | None = None,
    temperature: float | None = None,
) -> str:
    """Return the marker fragment that opens a turn, plus a blank body line."""

    lines = [f"```{FENCE_TAG}", f"role: {Role(role).value}"]
    if model:
        lines.append(f"model: {model}")
    if temperature is not None:
        lines.append(f"temp: {_format_temperature(temperature)}")
    lines.append("```")
    return "\n".join(lines) + "\n\n"


def encode_turn(turn: Turn) -> str:
    return encode_marker(turn.role, turn.model, turn.temperature) + turn.content + "\n\n"


def has_any_marker(text: str) -> bool:
    return bool(scan_markers(text))


def _trim_blank_lines(body: str) -> str:
    lines = _split_lines(body)
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    end = len(lines)
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "".join(lines[start:end])


def trim_all_bodies(text: str) -> str:
    """Strip leading and trailing blank lines from every turn body.

    Interior blank lines, the text before the first marker and the markers
    themselves are preserved byte-for-byte. The pass is idempotent.
    """

    spans = scan_markers(text)
    if not spans:
        return text
    pieces = [text[: spans[0].start]]
    for span in spans:
        pieces.append(text[span.start : span.body_start])
        pieces.append(_trim_blank_lines(text[span.body_start : span.body_end]))
    return "".join(pieces)


def count_turns(turns: Sequence[Turn], role: Role | str) -> int:
    target = Role(role)
    return sum(1 for turn in turns if turn.role is target)

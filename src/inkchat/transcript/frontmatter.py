"""Per-document overrides read from a YAML frontmatter block."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .codec import parse_metadata

__all__ = ["DocumentOverrides", "read_frontmatter"]

LOGGER = logging.getLogger(__name__)
_DELIMITER = "---"
_CLOSERS = ("---", "...")


def read_frontmatter(text: str) -> Dict[str, Any]:
    """Return the mapping in a ``---`` delimited block at the very top of ``text``.

    Documents without frontmatter, with an unterminated block, or with YAML that
    fails to parse all yield an empty mapping.
    """

    if not text.startswith(_DELIMITER):
        return {}
    lines = text.split("\n")
    if lines[0].rstrip() != _DELIMITER:
        return {}
    for index in range(1, len(lines)):
        if lines[index].rstrip() in _CLOSERS:
            return parse_metadata("\n".join(lines[1:index]))
    LOGGER.debug("Frontmatter block is not terminated; ignoring it")
    return {}


@dataclass(slots=True, frozen=True)
class DocumentOverrides:
    """Model, temperature and system prompt pinned by a document's frontmatter."""

    model: str | None = None
    temperature: float | None = None
    system_prompt: str | None = None

    @classmethod
    def from_text(cls, text: str) -> "DocumentOverrides":
        data = read_frontmatter(text)
        if not data:
            return cls()
        model = data.get("model")
        raw_temperature = data.get("temperature", data.get("temp"))
        temperature: float | None = None
        if raw_temperature is not None and not isinstance(raw_temperature, bool):
            try:
                temperature = min(1.0, max(0.0, float(raw_temperature)))
            except (TypeError, ValueError):
                LOGGER.debug("Ignoring non-numeric frontmatter temperature %r", raw_temperature)
        system = data.get("system")
        return cls(
            model=str(model).strip() or None if model is not None else None,
            temperature=temperature,
            system_prompt=str(system).strip() or None if system is not None else None,
        )

"""Default chat note names and the title derived from an auto-summary."""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable

__all__ = [
    "DEFAULT_NAME_PATTERN",
    "SUMMARY_INSTRUCTION",
    "is_default_name",
    "default_chat_name",
    "sanitize_title",
    "summary_file_name",
]

DEFAULT_NAME_PREFIX = "Chat - "
DEFAULT_NAME_PATTERN = re.compile(r"^Chat - (\d{4}-\d{2}-\d{2})(?: (\d+))?$")
SUMMARY_INSTRUCTION = (
    "Summarize the topic of this conversation in 6 words or fewer. "
    "Reply with the title only, without quotes or punctuation at the end."
)
_ILLEGAL_CHARACTERS = re.compile(r'[\\/:*?"<>|#^\[\]]')
_WHITESPACE = re.compile(r"\s+")


def is_default_name(name: str) -> bool:
    return DEFAULT_NAME_PATTERN.match(name.strip()) is not None


def default_chat_name(existing: Iterable[str], today: date | None = None) -> str:
    """Return ``Chat - YYYY-MM-DD``, adding a counter from 2 upwards when taken."""

    stamp = (today or date.today()).isoformat()
    base = f"{DEFAULT_NAME_PREFIX}{stamp}"
    taken = set(existing)
    if base not in taken:
        return base
    counter = 2
    while f"{base} {counter}" in taken:
        counter += 1
    return f"{base} {counter}"


def sanitize_title(text: str, max_length: int = 60) -> str:
    """Strip filesystem-illegal characters, collapse whitespace and cap the length."""

    cleaned = _ILLEGAL_CHARACTERS.sub("", text)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip().strip(".'`").strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned


def summary_file_name(old_name: str, summary: str, *, today: date | None = None) -> str:
    """``YYYY-MM-DD <summary>``, keeping the date of a default-named note."""

    match = DEFAULT_NAME_PATTERN.match(old_name.strip())
    stamp = match.group(1) if match else (today or date.today()).isoformat()
    return f"{stamp} {summary}"

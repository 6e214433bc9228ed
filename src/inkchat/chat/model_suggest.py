"""Completion helpers for typing a ``model:`` value inside a turn marker."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

__all__ = ["ModelTrigger", "find_model_trigger", "filter_models", "apply_suggestion"]

_TRIGGER = re.compile(r"model:\s*([^\s]*)$")


@dataclass(slots=True, frozen=True)
class ModelTrigger:
    """Columns of the partial model id being typed, plus the text typed so far."""

    start: int
    end: int
    query: str


def find_model_trigger(line: str, cursor: int | None = None) -> ModelTrigger | None:
    """Return the active trigger when the text before ``cursor`` ends in ``model: <query>``."""

    end = len(line) if cursor is None else max(0, min(cursor, len(line)))
    match = _TRIGGER.search(line[:end])
    if match is None:
        return None
    return ModelTrigger(start=match.start(1), end=end, query=match.group(1))


def filter_models(models: Iterable[str], query: str) -> list[str]:
    needle = query.lower()
    return [model for model in models if needle in model.lower()]


def apply_suggestion(line: str, trigger: ModelTrigger, value: str) -> str:
    return line[: trigger.start] + value + line[trigger.end :]

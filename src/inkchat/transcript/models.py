"""Dataclasses describing the conversation recovered from a chat document."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Semantic owner of a turn block."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the matching role, or ``None`` for missing/unknown values."""

        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class ChatImage:
    """Base64 image payload attached to a turn."""

    data: str
    mime_type: str


@dataclass(slots=True)
class Turn:
    """One role-tagged message of the transcript.

    Turns are transient: they are recomputed from the document text on every
    submission and never cached between exchanges.
    """

    role: Role
    content: str
    model: str | None = None
    temperature: float | None = None
    images: list[ChatImage] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.model:
            payload["model"] = self.model
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.images:
            payload["images"] = [
                {"data": image.data, "mime_type": image.mime_type} for image in self.images
            ]
        return payload


__all__ = ["Role", "ChatImage", "Turn"]

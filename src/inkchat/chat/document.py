"""Host-side documents the orchestrator streams into."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..transcript.images import AttachmentResolver, VaultAttachmentResolver
from ..utils.file_io import append_note, read_note, write_note

__all__ = ["ChatDocument", "MemoryChatDocument", "FileChatDocument"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ChatDocument(Protocol):
    """What the orchestrator needs from the editor's document model."""

    @property
    def key(self) -> str:
        """Stable identity used by the stream registry."""

    @property
    def name(self) -> str:
        """Base name without extension, used for auto-naming."""

    async def read(self) -> str:
        ...

    async def write(self, text: str) -> None:
        ...

    async def append(self, text: str) -> None:
        ...

    def sibling_exists(self, name: str) -> bool:
        ...

    async def rename(self, name: str) -> None:
        ...


@dataclass(slots=True)
class MemoryChatDocument:
    """In-memory document state for embedding hosts and tests."""

    text: str = ""
    title: str = "Untitled"
    siblings: set[str] = field(default_factory=set)
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    dirty: bool = False

    @property
    def key(self) -> str:
        return self.document_id

    @property
    def name(self) -> str:
        return self.title

    def update_text(self, new_text: str) -> None:
        """Replace the text and mark the document dirty."""

        self.text = new_text
        self.dirty = True

    async def read(self) -> str:
        return self.text

    async def write(self, text: str) -> None:
        self.update_text(text)

    async def append(self, text: str) -> None:
        self.update_text(self.text + text)

    def sibling_exists(self, name: str) -> bool:
        return name in self.siblings

    async def rename(self, name: str) -> None:
        if name in self.siblings:
            raise FileExistsError(name)
        self.siblings.discard(self.title)
        self.title = name


class FileChatDocument:
    """Markdown note on disk; blocking IO runs in a worker thread.

    The key is the resolved path at construction time and does not follow
    renames, so a registry entry stays addressable for the whole exchange.
    """

    def __init__(self, path: Path | str, *, vault_root: Path | str | None = None) -> None:
        self._path = Path(path)
        self._key = str(self._path.resolve())
        self._vault_root = Path(vault_root) if vault_root is not None else self._path.parent

    @property
    def path(self) -> Path:
        return self._path

    @property
    def key(self) -> str:
        return self._key

    @property
    def name(self) -> str:
        return self._path.stem

    def attachment_resolver(self) -> AttachmentResolver:
        return VaultAttachmentResolver(self._vault_root, source_dir=self._path.parent)

    async def read(self) -> str:
        if not self._path.exists():
            return ""
        return await asyncio.to_thread(read_note, self._path)

    async def write(self, text: str) -> None:
        await asyncio.to_thread(write_note, self._path, text)

    async def append(self, text: str) -> None:
        await asyncio.to_thread(append_note, self._path, text)

    def _sibling_path(self, name: str) -> Path:
        return self._path.with_name(f"{name}{self._path.suffix}")

    def sibling_exists(self, name: str) -> bool:
        return self._sibling_path(name).exists()

    async def rename(self, name: str) -> None:
        target = self._sibling_path(name)
        if target.exists():
            raise FileExistsError(str(target))
        await asyncio.to_thread(self._path.rename, target)
        LOGGER.info("Renamed %s to %s", self._path.name, target.name)
        self._path = target

"""Read and write markdown notes on disk.

Notes are UTF-8 with ``\\n`` line endings in memory. A UTF-8 byte order mark
is dropped on read; ``\\r\\n`` and lone ``\\r`` become ``\\n`` in both
directions so offsets computed on the text match what gets written back.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

__all__ = ["read_note", "write_note", "append_note"]


def read_note(path: Path | str) -> str:
    raw = Path(path).read_bytes()
    return _to_lf(raw.decode("utf-8-sig"))


def write_note(path: Path | str, text: str) -> Path:
    """Replace the note atomically; readers never observe a half-written file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding="utf-8", newline="") as handle:
            handle.write(_to_lf(text))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    return target


def append_note(path: Path | str, text: str) -> Path:
    """Append streamed text without rewriting what is already on disk."""

    target = Path(path)
    with target.open("a", encoding="utf-8", newline="") as handle:
        handle.write(_to_lf(text))
        handle.flush()
    return target


def _to_lf(text: str) -> str:
    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")

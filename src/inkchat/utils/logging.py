"""Log file configuration for the inkchat command-line host."""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["setup_logging", "get_log_path", "RedactQueryKeysFilter"]

_DEFAULT_LOG_DIR = Path.home() / ".inkchat" / "logs"
_LOG_FILE_NAME = "inkchat.log"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_TRANSPORT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")
_QUERY_KEY = re.compile(r"([?&](?:key|api[-_]key)=)[^&\s\"']+", re.IGNORECASE)
_log_path: Path | None = None


class RedactQueryKeysFilter(logging.Filter):
    """Mask API keys passed as URL query parameters.

    Gemini authenticates with ``?key=...``, so any logged request URL would
    otherwise carry the credential into the log file.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _QUERY_KEY.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    force: bool = False,
) -> Path:
    """Send records to ``inkchat.log`` (rotated at 1 MB) and optionally stderr.

    Repeated calls are no-ops unless ``force`` is set. ``INKCHAT_LOG_DIR``
    overrides the default ``~/.inkchat/logs`` directory.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get("INKCHAT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / _LOG_FILE_NAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    redactor = RedactQueryKeysFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # request lines from the HTTP stack only surface at WARNING and above
    transport_level = max(level, logging.WARNING)
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _log_path

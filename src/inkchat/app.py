"""Command-line host that drives chat exchanges over markdown notes."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .chat.document import FileChatDocument
from .chat.naming import default_chat_name
from .chat.orchestrator import ChatOrchestrator, ExchangeResult, ExchangeStatus
from .events import DocumentRenamed, EventBus, ExchangeChunk, NoticePosted
from .llm.catalog import list_all_models
from .services.settings import Settings, SettingsStore, redacted_settings
from .transcript.codec import encode_marker, trim_all_bodies
from .transcript.models import Role
from .utils import logging as logging_utils
from .utils.file_io import read_note, write_note

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_NONE_VALUES = {"none", "null"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Log to the rotating file; echo to the console only in debug mode."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``inkchat`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("INKCHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("INKCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command == "chat":
        return _command_chat(settings, Path(args.file), vault=args.vault)
    if args.command == "new":
        return _command_new(settings, Path(args.directory))
    if args.command == "trim":
        return _command_trim(Path(args.file))
    if args.command == "models":
        return _command_models(settings, include_hidden=args.all)
    if args.command in {"hide", "show"}:
        return _command_visibility(store, args.model, visible=args.command == "show")
    if args.command == "settings":
        _dump_settings(settings, store, overrides=cli_overrides)
        return 0
    parser.print_help()
    return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inkchat",
        description="Chat with language models inside plain markdown notes.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.inkchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    commands = parser.add_subparsers(dest="command")

    chat = commands.add_parser("chat", help="Send the transcript in FILE and stream the reply into it.")
    chat.add_argument("file", metavar="FILE")
    chat.add_argument("--vault", metavar="DIR", help="Root directory used to resolve ![[attachments]].")

    new = commands.add_parser("new", help="Create a new chat note with the next default name.")
    new.add_argument("directory", metavar="DIR", nargs="?", default=".")

    trim = commands.add_parser("trim", help="Strip blank lines around every turn body in FILE.")
    trim.add_argument("file", metavar="FILE")

    models = commands.add_parser("models", help="List model ids across all providers.")
    models.add_argument("--all", action="store_true", help="Include hidden models.")

    hide = commands.add_parser("hide", help="Hide MODEL from model listings.")
    hide.add_argument("model", metavar="MODEL")
    show = commands.add_parser("show", help="Show MODEL in model listings again.")
    show.add_argument("model", metavar="MODEL")

    commands.add_parser("settings", help="Print the effective settings with secrets redacted.")
    return parser


def _command_chat(settings: Settings, path: Path, *, vault: str | None = None) -> int:
    if not path.exists():
        print(f"No such file: {path}", file=sys.stderr)
        return 2
    document = FileChatDocument(path, vault_root=vault)
    result = asyncio.run(run_chat(document, settings))
    if result is None or result.status is ExchangeStatus.FAILED:
        return 1
    return 0


async def run_chat(
    document: FileChatDocument,
    settings: Settings,
    *,
    stream: TextIO | None = None,
) -> ExchangeResult | None:
    """Stream one exchange into ``document`` while echoing fragments to ``stream``.

    SIGINT stops the stream instead of killing the process, so partial text is
    kept exactly as the orchestrator left it.
    """

    destination = stream or sys.stdout
    bus: EventBus = EventBus()

    def _echo(event: ExchangeChunk) -> None:
        destination.write(event.content)
        destination.flush()

    def _notice(event: NoticePosted) -> None:
        print(f"\n{event.message}", file=sys.stderr)

    def _renamed(event: DocumentRenamed) -> None:
        print(f"Renamed to {event.new_name}", file=sys.stderr)

    bus.subscribe(ExchangeChunk, _echo)
    bus.subscribe(NoticePosted, _notice)
    bus.subscribe(DocumentRenamed, _renamed)

    orchestrator = ChatOrchestrator(lambda: settings, event_bus=bus)
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, document.key)
    try:
        result = await orchestrator.submit(document)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
    destination.write("\n")
    return result


def _command_new(settings: Settings, directory: Path) -> int:
    directory.mkdir(parents=True, exist_ok=True)
    existing = [item.stem for item in directory.glob("*.md")]
    name = default_chat_name(existing)
    body = ""
    prompt = settings.default_system_prompt.strip()
    if prompt:
        body += encode_marker(Role.SYSTEM) + prompt + "\n\n"
    body += encode_marker(Role.USER)
    target = write_note(directory / f"{name}.md", body)
    print(target)
    return 0


def _command_trim(path: Path) -> int:
    if not path.exists():
        print(f"No such file: {path}", file=sys.stderr)
        return 2
    try:
        original = read_note(path)
    except UnicodeDecodeError as exc:
        print(f"{path} is not UTF-8 text: {exc}", file=sys.stderr)
        return 2
    trimmed = trim_all_bodies(original)
    if trimmed != original:
        write_note(path, trimmed)
        _LOGGER.info("Trimmed turn bodies in %s", path)
    return 0


def _command_models(settings: Settings, *, include_hidden: bool = False) -> int:
    for model_id in asyncio.run(list_all_models(settings, include_hidden=include_hidden)):
        print(model_id)
    return 0


def _command_visibility(store: SettingsStore, model_id: str, *, visible: bool) -> int:
    """Persist a visibility toggle without baking CLI/env overrides into the file."""

    persisted = store.load(environment=False)
    store.save(persisted.with_model_visibility(model_id, visible))
    print(f"{model_id}: {'visible' if visible else 'hidden'}")
    return 0


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    normalized = raw_value.strip()
    if normalized.lower() in _NONE_VALUES and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "log_path": str(logging_utils.get_log_path() or ""),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": redacted_settings(settings), "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("INKCHAT_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

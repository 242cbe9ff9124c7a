"""
Structured logging for pipeline runs.

Every record carries the run it belongs to (``fast_<uuid7>`` or
``deep-<hex>``), the pipeline phase and, inside a section task, the outline
section. Those three live in context variables, so concurrent section tasks
each log under their own section.

Handlers:
- JSON Lines file (``LOG_FILE``), one object per record
- rich console on stderr, prefixed with ``<kind> <short id> <phase> <section>``
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER = "dr"
QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "asyncio", "aiosqlite")

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)
_phase: ContextVar[str | None] = ContextVar("phase", default=None)
_section: ContextVar[str | None] = ContextVar("section", default=None)

_console: Console | None = None
_configured = False


def run_fields() -> dict[str, str]:
    """Run, phase and section of the current task, omitting unset ones."""
    fields = {"run_id": _run_id.get(), "phase": _phase.get(), "section": _section.get()}
    return {k: v for k, v in fields.items() if v}


def set_phase(phase: str | None) -> None:
    """Record the phase a pipeline just entered. Lasts until the run's context ends."""
    _phase.set(phase)


@contextmanager
def log_context(
    run_id: str | None = None,
    section: str | None = None,
    phase: str | None = None,
) -> Iterator[None]:
    """Scope run, section or phase fields to a block. None keeps the outer value.

    All three are restored on exit, including a phase set inside the block.
    """
    tokens = [
        (var, var.set(var.get() if value is None else value))
        for var, value in ((_run_id, run_id), (_section, section), (_phase, phase))
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def short_run_id(run_id: str) -> str:
    """``fast_0192...9f3a1c`` -> ``fast 9f3a1c``; ``deep-0123456789ab`` -> ``deep 6789ab``."""
    for sep in ("_", "-"):
        kind, found, rest = run_id.partition(sep)
        if found and rest:
            return f"{kind} {rest.replace('-', '')[-6:]}"
    return run_id[-6:]


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with run fields and structured extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **run_fields(),
        }
        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode()


class RunRichHandler(RichHandler):
    """Console handler that prefixes the level with the run context."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        fields = run_fields()
        prefix = Text()
        if "run_id" in fields:
            prefix.append(short_run_id(fields["run_id"]), style="dim")
        if "phase" in fields:
            prefix.append(f" {fields['phase']}", style="cyan")
        if "section" in fields:
            prefix.append(f" [{fields['section']}]", style="magenta")
        if not prefix:
            return level_text
        return Text.assemble(level_text, " ", prefix)


class ContextLogger:
    """Logger whose keyword arguments become structured fields.

    Example:
        logger.info("Section status", section_id="alpha", status="analyzing")
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level, msg, exc_info=exc_info, extra={"fields": {**run_fields(), **fields}}
        )

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Error with the active traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **fields)


def get_console() -> Console:
    """Shared stderr console, used by the CLI and the log handler alike."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(log_level: str = "INFO", log_file: Path | None = None) -> None:
    """(Re)configure the ``dr`` logger tree.

    Args:
        log_level: Console level name. The file handler always records DEBUG.
        log_file: JSON Lines destination. None logs to the console only.
    """
    global _configured

    level = logging.getLevelName(log_level.upper())
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.propagate = False

    console = RunRichHandler(
        console=get_console(), show_path=False, rich_tracebacks=True, markup=False
    )
    console.setLevel(level)
    root.addHandler(console)
    root.setLevel(level)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        root.setLevel(logging.DEBUG)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> ContextLogger:
    """Context-aware logger under the ``dr`` tree (usually ``get_logger(__name__)``)."""
    if not _configured:
        setup_logging()
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))

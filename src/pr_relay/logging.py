"""structlog configuration and per-record logging context.

Provides run ID generation, a record-level logging context manager,
and structured log configuration for console and JSON output with
optional file logging.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Run ID
# ---------------------------------------------------------------------------


def generate_run_id() -> str:
    """Generate a unique identifier for one ``watch`` process.

    Returns:
        A UUID4 string.
    """
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# structlog configuration
# ---------------------------------------------------------------------------


_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Loggers that narrate every request; the relay's own events already do
_CHATTY_LOGGERS = ("httpx", "httpcore")


def _event_processors() -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer_chain(fmt: str) -> list[structlog.types.Processor]:
    if fmt == "json":
        # Tracebacks from log.exception must become a string before JSON
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer()]


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    run_id: str | None = None,
) -> None:
    """Route structlog and stdlib records through one formatter.

    Relay events and third-party stdlib records (httpx warnings, for
    example) share the timestamp, level and logger fields and the same
    console or JSON rendering. Reconfiguring replaces the previous handlers.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: ``"console"`` for human-readable or ``"json"`` for one JSON
            object per line.
        log_file: Optional file path for log output (in addition to stderr).
        run_id: Optional run ID to bind to all log entries.

    Raises:
        ValueError: If ``level`` is not a recognized log level.
    """
    level_upper = level.upper()
    if level_upper not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)
    numeric_level = getattr(logging, level_upper)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_event_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderer_chain(fmt),
        ],
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            *_event_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    if run_id:
        structlog.contextvars.bind_contextvars(run_id=run_id)


# ---------------------------------------------------------------------------
# Record logging context manager
# ---------------------------------------------------------------------------


@contextmanager
def record_logging_context(
    record_id: str,
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Bind a notification's identity to everything logged while handling it.

    Each record is processed in its own asyncio task, so the bound
    contextvars do not leak into sibling records of the same tick.

    Args:
        record_id: The notification thread ID.
        **extra: Additional key-value pairs to bind.

    Yields:
        A bound structlog logger with record context.

    Example::

        with record_logging_context(record.id, url=record.reference_url) as log:
            log.info("record_resolved", pull_request=ref.full_name)
    """
    structlog.contextvars.bind_contextvars(record_id=record_id, **extra)

    log: structlog.stdlib.BoundLogger = structlog.get_logger("pr_relay.record")
    try:
        yield log
    finally:
        structlog.contextvars.unbind_contextvars("record_id", *extra.keys())

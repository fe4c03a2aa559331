"""
Structured Logging with Rich.

Provides consistent, colorful logging across the memory engine.
"""

import logging
from contextvars import ContextVar, Token
from functools import lru_cache

from rich.console import Console
from rich.logging import RichHandler

_log_context: ContextVar[dict[str, str | int | float]] = ContextVar("log_context", default={})
_base_factory = logging.getLogRecordFactory()


def _context_record_factory(*args, **kwargs) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    record = _base_factory(*args, **kwargs)
    context = _log_context.get()
    for key, value in context.items():
        setattr(record, key, value)
    record.log_context = (
        " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"
        if context
        else ""
    )
    return record


logging.setLogRecordFactory(_context_record_factory)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logger with Rich handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    console = Console(stderr=True)

    logging.basicConfig(
        level=level,
        format="%(name)s | %(message)s%(log_context)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_time=True,
                show_path=False,
            )
        ],
        force=True,
    )

    # Oracle and embedding SDKs log every HTTP round trip
    for noisy in ("httpx", "httpcore", "openai", "aiosqlite", "llama_index"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given module name.

    Uses lru_cache to avoid creating duplicate loggers.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LogContext:
    """
    Context manager attaching tenant/episode fields to every log record.

    Backed by a ContextVar, so concurrent ingestion tasks each see their own fields.

    Usage:
        with LogContext(logger, group_id="tenant-1", episode_id="ep-1"):
            logger.info("Resolving entities")
    """

    def __init__(self, logger: logging.Logger, **context: str | int | float) -> None:
        self.logger = logger
        self.context = context
        self._token: Token | None = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, *args: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def current_log_context() -> dict[str, str | int | float]:
    """Fields currently attached to log records in this task."""
    return dict(_log_context.get())

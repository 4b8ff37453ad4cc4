"""Logging for rolloutctl.

Everything logs under the ``rolloutctl`` namespace. Orchestration code logs
through ``StructuredLogger`` so entity ids, statuses and readings appear as a
``[key=value ...]`` suffix that stays greppable in CI output.
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "rolloutctl"

_handler: logging.Handler | None = None


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def numeric(self) -> int:
        return getattr(logging, self.value.upper())


def resolve_level(verbose: int = 0, quiet: bool = False, default: LogLevel = LogLevel.WARNING) -> LogLevel:
    """Pick the effective level from CLI flags, falling back to config.

    ``-v`` gives info, ``-vv`` debug, ``-q`` errors only. Verbosity wins over
    quiet when both are given.
    """
    if verbose >= 2:
        return LogLevel.DEBUG
    if verbose == 1:
        return LogLevel.INFO
    if quiet:
        return LogLevel.ERROR
    return default


def _make_handler(rich_output: bool) -> logging.Handler:
    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def setup_logging(level: LogLevel = LogLevel.WARNING, rich_output: bool = True) -> logging.Logger:
    """Install the rolloutctl handler on stderr.

    Safe to call repeatedly: the previous rolloutctl handler is replaced and
    handlers owned by the host application are left alone.

    Args:
        level: Threshold for rolloutctl loggers
        rich_output: Use Rich formatting instead of plain lines

    Returns:
        The ``rolloutctl`` namespace logger
    """
    global _handler

    logger = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        logger.removeHandler(_handler)

    _handler = _make_handler(rich_output)
    logger.addHandler(_handler)
    logger.setLevel(level.numeric)

    # Scheduler loop chatter
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger inside the rolloutctl namespace.

    Module names (``rolloutctl.deploy.canary``) are used as-is; short names
    are prefixed.
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def render_value(value: Any) -> str:
    """Render one context value for a log line."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float):
        return f"{value:.2f}".rstrip("0").rstrip(".")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredLogger:
    """Logger that carries key/value context."""

    def __init__(self, name: str, context: dict[str, Any] | None = None):
        self._logger = get_logger(name)
        self._context: dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Create a logger that adds ``kwargs`` to every line."""
        return StructuredLogger(self._logger.name, {**self._context, **kwargs})

    def _format_message(self, message: str, **kwargs: Any) -> str:
        context = {**self._context, **kwargs}
        if not context:
            return message
        pairs = " ".join(f"{k}={render_value(v)}" for k, v in context.items())
        return f"{message} [{pairs}]"

    def _log(self, level: int, message: str, kwargs: dict[str, Any]) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, kwargs)

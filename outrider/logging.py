"""femtologging wiring for Outrider entry points.

Library modules log through the standard :mod:`logging` API; the process
entry points (runtime server, CLI, Dramatiq actors) call
:func:`configure_logging` once so records are handled by femtologging with a
validated level taken from ``OUTRIDER_LOG_LEVEL``.

Example:
>>> from outrider.logging import get_logger, log_info
>>> logger = get_logger(__name__)
>>> log_info(logger, "Scheduler tick dispatched %d scans", 4)

"""

from __future__ import annotations

import enum
import os
import typing as typ

from femtologging import basicConfig, get_logger

LOG_LEVEL_ENV = "OUTRIDER_LOG_LEVEL"


class LogLevel(enum.StrEnum):
    """Log levels accepted by femtologging."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Normalize a log level string and report invalid inputs.

    Parameters
    ----------
    level : str | None
        Raw log level string to normalize.

    Returns
    -------
    tuple[str, bool]
        The normalized log level and a flag that is ``True`` when the input
        was missing or unrecognised and ``INFO`` was substituted.

    """
    if not level:
        return ("INFO", True)

    normalized = level.strip().upper()
    if normalized in LogLevel.__members__:
        return (normalized, False)

    return ("INFO", True)


def configure_logging(level: str | None = None, *, force: bool = False) -> tuple[str, bool]:
    """Configure femtologging and return the normalized level.

    When *level* is ``None`` the value of ``OUTRIDER_LOG_LEVEL`` is used.
    """
    raw = level if level is not None else os.environ.get(LOG_LEVEL_ENV, "INFO")
    normalized, invalid = normalize_log_level(raw)
    basicConfig(level=normalized, force=force)
    return (normalized, invalid)


class _SupportsLog(typ.Protocol):
    """Protocol for femtologging-compatible loggers."""

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str | None: ...


def _emit(
    logger: _SupportsLog,
    level: str,
    template: str,
    args: tuple[object, ...],
    exc_info: object | None,
) -> None:
    logger.log(level, template % args, exc_info=exc_info, stack_info=False)


def log_info(
    logger: _SupportsLog, template: str, *args: object, exc_info: object | None = None
) -> None:
    """Log an INFO message with percent-style formatting."""
    _emit(logger, "INFO", template, args, exc_info)


def log_warning(
    logger: _SupportsLog, template: str, *args: object, exc_info: object | None = None
) -> None:
    """Log a WARNING message with percent-style formatting."""
    _emit(logger, "WARNING", template, args, exc_info)


def log_error(
    logger: _SupportsLog, template: str, *args: object, exc_info: object | None = None
) -> None:
    """Log an ERROR message with percent-style formatting."""
    _emit(logger, "ERROR", template, args, exc_info)


def log_exception(logger: _SupportsLog, message: str, exc: BaseException) -> None:
    """Log *message* at ERROR with *exc* attached as exc_info."""
    logger.log("ERROR", message, exc_info=exc, stack_info=False)


def configure_from_env(logger: _SupportsLog) -> str:
    """Configure logging from the environment, warning on invalid levels.

    Returns
    -------
    str
        The level that was applied.

    """
    raw = os.environ.get(LOG_LEVEL_ENV, "INFO")
    normalized, invalid = configure_logging(raw)
    if invalid:
        log_warning(
            logger,
            "Invalid %s %r, falling back to %s",
            LOG_LEVEL_ENV,
            raw,
            normalized,
        )
    return normalized


__all__ = [
    "LOG_LEVEL_ENV",
    "configure_from_env",
    "configure_logging",
    "get_logger",
    "log_error",
    "log_exception",
    "log_info",
    "log_warning",
    "normalize_log_level",
]

"""Loguru logger used across firestoreorm.

Library modules import ``logger`` from here. Applications call
``configure_logger()`` once at startup to install a sink; until then loguru's
default stderr handler applies. Under pytest no sink is configured so tests
can attach their own.
"""

import logging
import sys
from inspect import currentframe

import typing as t
from loguru import logger as _loguru_logger

from .config import LoggerSettings
from .depends import depends

logger = _loguru_logger.bind(library="firestoreorm")


class InterceptHandler(logging.Handler):
    """Route stdlib ``logging`` records (google client libraries) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = _loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        _loguru_logger.opt(depth=depth, exception=record.exc_info).log(
            level,
            record.getMessage(),
        )


def _is_testing_mode() -> bool:
    return "pytest" in sys.modules


def configure_logger(settings: LoggerSettings | None = None) -> t.Any:
    """Install the firestoreorm stderr sink and return the bound logger."""
    settings = settings or depends.get_sync(LoggerSettings)
    if _is_testing_mode():
        return logger

    _loguru_logger.remove()
    _loguru_logger.add(
        sys.stderr,
        level=settings.log_level,
        format=settings.format,
        serialize=settings.serialize,
        backtrace=False,
        diagnose=False,
    )
    if settings.intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logger.debug(f"Logger configured at level {settings.log_level}")
    return logger


__all__ = ["InterceptHandler", "configure_logger", "logger"]

"""
Logging setup built on loguru.

Every module grabs a bound logger through ``get_logger(__name__)``; the CLI
calls ``configure_logging`` once before doing any work.
"""

import sys
import traceback

from loguru import logger as _logger

from ipocalypse.models.enums import LogLevel

_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

# Loggers created before configure_logging() still need the "name" extra
_logger.configure(extra={"name": "ipocalypse"})


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Replace loguru's default sink with one at the requested verbosity.

    Args:
        level: Verbosity. ``FULL`` logs at DEBUG with backtraces and
            variable diagnosis on exceptions.
    """
    level = LogLevel(level)
    full = level == LogLevel.FULL
    loguru_level = "DEBUG" if full else level.value.upper()

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=_FORMAT,
        backtrace=full,
        diagnose=full,
    )


def get_logger(name: str):
    """Return a loguru logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception and its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

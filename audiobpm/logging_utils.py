"""Component-tagged logging for the package.

Every record carries a ``tag`` naming the component that produced it
(``Session``, ``Cleanup``...).  The package only emits records; the console
handler is installed by the command-line runner via
:func:`configure_logging`.
"""

from __future__ import annotations

import logging
from typing import Any

LOG_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"

logger = logging.getLogger("audiobpm")
logger.addHandler(logging.NullHandler())


def _level(name: str) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under ``tag``; ``fields`` are appended as ``key=value``."""
    if fields:
        message = message + " | " + " ".join(f"{k}={v}" for k, v in fields.items())
    logger.log(_level(level), message, extra={"tag": tag})


def set_log_level(level: str) -> None:
    logger.setLevel(_level(level))


def get_log_level() -> str:
    return logging.getLevelName(logger.level)


def configure_logging(level: str = "INFO") -> logging.Handler:
    """Attach a console handler to the package logger, once."""
    for handler in logger.handlers:
        if getattr(handler, "_audiobpm_console", False):
            break
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._audiobpm_console = True
        logger.addHandler(handler)
    set_log_level(level)
    return handler


__all__ = ["LOG_FORMAT", "log_event", "set_log_level", "get_log_level", "configure_logging"]

"""Process-wide logging setup.

Every module calls ``get_logger(__name__)``; the first call attaches one
stream handler to the root logger. Level comes from MAILROOM_LOG_LEVEL unless
a caller (the scan CLI's --verbose flag) overrides it with configure_logging().
"""

from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_LEVEL_OVERRIDE: int | None = None
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    if _LEVEL_OVERRIDE is not None:
        return _LEVEL_OVERRIDE
    level_name = os.getenv("MAILROOM_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _attach_handler(level: int) -> None:
    global _HANDLER_ATTACHED

    root = logging.getLogger()
    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        _HANDLER_ATTACHED = True
    root.setLevel(level)


def configure_logging(level: int | str | None = None) -> None:
    """Force a log level for the whole process (None restores the env default)."""
    global _LEVEL_OVERRIDE

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    _LEVEL_OVERRIDE = level
    _attach_handler(_resolve_level())


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with a single stream handler."""
    level = _resolve_level()
    _attach_handler(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger

"""
Logging helpers for the streaming graph service.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where those records end up.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"

# The health poller issues a request every few seconds.
CHATTY_LOGGERS = ("httpx", "httpcore")


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format: Optional[str] = None,
    quiet: Iterable[str] = CHATTY_LOGGERS,
) -> None:
    """
    Ensure the root logger is configured exactly once.

    Loggers named in ``quiet`` are raised to WARNING unless the root level is
    DEBUG.
    """

    root_level = resolve_level(level)
    if root_level > logging.DEBUG:
        for name in quiet:
            logging.getLogger(name).setLevel(logging.WARNING)

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=root_level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

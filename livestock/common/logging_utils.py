"""Logging set-up for the service entry points.

``livestock-consumer`` and ``livestock-api`` call :func:`configure_logging`
once with ``Settings.log_level``; library modules only ever call
``logging.getLogger(__name__)`` and never configure handlers themselves.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(level: Optional[str]) -> int:
    resolved = logging.getLevelName(str(level or "INFO").strip().upper())
    # getLevelName returns "Level X" for names it does not know
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Send log records to stdout in one shared format.

    Unknown level names fall back to ``INFO``.  Calling this again only
    adjusts the root level.
    """

    log_level = _resolve_level(level)
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(log_level)
        return
    logging.basicConfig(level=log_level, format=_LOG_FORMAT, stream=sys.stdout)


__all__ = ["configure_logging"]

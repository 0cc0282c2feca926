"""Logging setup.

Modules log through ``logging.getLogger(__name__)``; this only installs a
handler on the root logger and applies the configured level.
"""
from __future__ import annotations

import logging
import sys

from config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger. ``level`` defaults to ``Settings.log_level``."""
    level = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.WARNING))
    if not any(getattr(h, "_opcontracts", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._opcontracts = True
        root.addHandler(handler)

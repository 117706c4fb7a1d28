"""
OpenWarden logging setup.

All modules log under the ``OpenWarden`` hierarchy
(``OpenWarden.Agents.Navigator``, ``OpenWarden.Router`` ...). Lines use the
same layout everywhere so they can be filtered by module::

    2026-10-18 12:00:00,000 - OpenWarden.Agents.Guard1 - INFO - Guarding player Steve
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LEVEL_ORDER = {"DEBUG": 0, "INFO": 1, "WARNING": 2, "ERROR": 3, "CRITICAL": 4}


def resolve_level(level: Optional[str]) -> int:
    """Map a level name (case-insensitive) to a ``logging`` constant.

    Unknown names fall back to INFO.
    """
    name = (level or "INFO").upper()
    if name not in LEVEL_ORDER:
        return logging.INFO
    return getattr(logging, name)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Install the root handlers.

    Args:
        level: Minimum level name. ``OPENWARDEN_LOG_LEVEL`` overrides it.
        log_file: Optional path; ``OPENWARDEN_LOG_FILE`` overrides it.
    """
    level = os.getenv("OPENWARDEN_LOG_LEVEL", level or "INFO")
    log_file = os.getenv("OPENWARDEN_LOG_FILE", log_file or "")

    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

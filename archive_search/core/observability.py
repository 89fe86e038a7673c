"""Logging initialization helpers for archive search services."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from archive_search.core.config import settings

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the package logger once per process."""

    global _LOGGING_INITIALIZED
    resolved = (level or settings.LOG_LEVEL).upper()
    package_logger = logging.getLogger("archive_search")
    package_logger.setLevel(resolved)

    if not _LOGGING_INITIALIZED:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
        package_logger.propagate = False
        _LOGGING_INITIALIZED = True
        logger.debug("Logging initialized at level %s", resolved)


__all__ = ["configure_logging"]

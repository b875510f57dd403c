# src/logging/handlers.py — v2
"""File handlers for the galley log.

Rotation is either size based ("10MB", "512KB") or time based ("daily",
"hourly"). Retention is the number of rotated files kept.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

_SIZE = re.compile(r"^(\d+)\s*(KB|MB|GB)$", re.IGNORECASE)
_MULTIPLIERS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}
_INTERVALS = {"hourly": "H", "daily": "midnight"}


def parse_size(size_str: str) -> int:
    """Parse size string like '10MB' into bytes."""
    match = _SIZE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    return int(match.group(1)) * _MULTIPLIERS[match.group(2).upper()]


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Handler:
    """Create a size- or time-rotated file handler.

    Args:
        log_file: Path to log file (``~`` is expanded, parents created).
        rotation: "daily", "hourly" or a size such as "10MB".
        retention: Number of backup files to keep.
    """
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    interval = _INTERVALS.get(rotation.strip().lower())
    if interval is not None:
        return TimedRotatingFileHandler(
            filename=str(path),
            when=interval,
            backupCount=retention,
            encoding="utf-8",
            utc=True,
        )

    return RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )

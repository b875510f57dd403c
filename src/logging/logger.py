# src/logging/logger.py — v2
"""Log formatters for report runs, and root logger setup.

JSON lines carry the report, manuscript, agent and chunk a record was
emitted for as top-level keys, so one report's trail can be filtered out
of a shared log. Gateway records also attach the provider attempt they
describe via ``extra={"call": {...}}`` (model, attempt, tokens, price).
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

from galley.logging.context import LogContext, get_context

_CHUNK_STEP = re.compile(r"^chunk_(\d+)")


def chunk_ordinal(step: str | None) -> int | None:
    """0-based chunk ordinal from a ``chunk_NNN`` step label (1-based)."""
    if not step:
        return None
    match = _CHUNK_STEP.match(step)
    return int(match.group(1)) - 1 if match else None


def _run_fields(ctx: LogContext) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "report_id": ctx.report_id,
        "manuscript_id": ctx.manuscript_id,
        "agent_kind": ctx.agent,
        "chunk": chunk_ordinal(ctx.step),
        "step": ctx.step,
    }
    return {k: v for k, v in fields.items() if v is not None}


class JsonFormatter(logging.Formatter):
    """Structured JSON log formatter; one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_run_fields(get_context()))

        call = getattr(record, "call", None)
        if call:
            log_entry["call"] = call
        data = getattr(record, "data", None)
        if data:
            log_entry["data"] = data

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        parts = [
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        if ctx.report_id:
            parts.append(f"<{ctx.report_id[:8]}>")
        if ctx.agent:
            parts.append(f"[{ctx.agent}]")
        if ctx.step:
            parts.append(f"({ctx.step})")
        parts.append(f"- {record.getMessage()}")
        call = getattr(record, "call", None)
        if call and call.get("price"):
            parts.append(f"${call['price']:.6f}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """Configure the ``galley`` logger tree.

    Console output goes to stderr so ``galley`` CLI commands keep stdout
    for their JSON results.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format ("json" or "text").
        log_file: Path to a rotating log file (None = stderr only).
        rotation: Max file size (e.g. "10MB") or "daily".
        retention: Number of rotated files to keep.
    """
    root_logger = logging.getLogger("galley")
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        from galley.logging.handlers import create_rotating_handler

        file_handler = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

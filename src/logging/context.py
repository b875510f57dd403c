# src/logging/context.py — v1
"""Contextual logging support — attach report_id, manuscript_id, agent and
step to log records.

Context variables propagate into asyncio tasks created while they are set,
so every agent task of a report run inherits the report context.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_report_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "report_id", default=None
)
_manuscript_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "manuscript_id", default=None
)
_agent: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "agent", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    report_id: str | None = None
    manuscript_id: str | None = None
    agent: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        report_id=_report_id.get(),
        manuscript_id=_manuscript_id.get(),
        agent=_agent.get(),
        step=_step.get(),
    )


def set_report_context(report_id: str, manuscript_id: str) -> None:
    """Set report-level context (called once per report run)."""
    _report_id.set(report_id)
    _manuscript_id.set(manuscript_id)


def set_agent_context(agent: str | None, step: str | None = None) -> None:
    """Set agent-level context (called per agent execution)."""
    _agent.set(agent)
    _step.set(step)


def set_step(step: str | None) -> None:
    _step.set(step)


def clear_context() -> None:
    """Reset all context variables."""
    _report_id.set(None)
    _manuscript_id.set(None)
    _agent.set(None)
    _step.set(None)

# src/core/errors.py — v1
"""Typed error vocabulary shared by every component.

Boundary kinds reach the HTTP layer; internal kinds only ever appear on
AgentCall rows, AgentResult error descriptors and the report errors list.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

BoundaryErrorKind = Literal[
    "unauthorized",
    "forbidden",
    "unknown_manuscript",
    "unknown_report",
    "already_running",
    "quota_exhausted",
    "spend_ceiling_reached",
    "invalid_pipeline",
    "invalid_transition",
    "cancelled",
    "supervisor_timeout",
    "internal",
]

InternalErrorKind = Literal[
    "transport",
    "rate_limited",
    "server_error",
    "client_error",
    "parse_unavailable",
    "parse_error",
    "template_slot_missing",
    "unknown_template",
    "budget_exhausted",
    "dependency_failed",
]

ErrorKind = BoundaryErrorKind | InternalErrorKind


class ErrorDescriptor(BaseModel):
    """Serializable description of a failure, stored on results and reports."""

    kind: str
    message: str = ""
    agent_kind: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class GalleyError(Exception):
    """Base class for errors raised (not returned) by galley components."""

    kind: str = "internal"

    def __init__(self, message: str = "", kind: str | None = None, **details: Any) -> None:
        if kind is not None:
            self.kind = kind
        self.details = details
        super().__init__(message or self.kind)

    def descriptor(self, agent_kind: str | None = None) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=self.kind, message=str(self), agent_kind=agent_kind, details=self.details
        )


class AdmissionError(GalleyError):
    """Admission rejected by the job dispatcher."""


class NotFoundError(GalleyError):
    kind = "unknown_report"


class ForbiddenError(GalleyError):
    kind = "forbidden"


class InvalidTransitionError(GalleyError):
    """Report state change not allowed from the current state."""

    kind = "invalid_transition"


class InvalidPipelineError(GalleyError):
    """Pipeline spec is unknown, cyclic or references unusable agents."""

    kind = "invalid_pipeline"


class TemplateSlotMissingError(GalleyError):
    kind = "template_slot_missing"


class UnknownTemplateError(GalleyError):
    kind = "unknown_template"

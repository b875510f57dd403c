# src/api/models.py — v2
"""API-level request and response bodies.

Field names are camelCase on the wire (``reportId``, ``totalCost``); the
models accept both spellings on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from galley.core.errors import ErrorDescriptor
from galley.core.models import AgentResult, ReportAggregate


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateReportRequest(ApiModel):
    pipeline_spec_id: str
    exclusive: bool = False


class CreateReportResponse(ApiModel):
    report_id: str
    status: str


class CancelResponse(ApiModel):
    status: str


class AgentResultSummary(ApiModel):
    status: str
    payload_ref: str | None = None
    cost: float = 0.0
    chunk_count: int = 0
    error: ErrorDescriptor | None = None

    @classmethod
    def from_result(cls, result: AgentResult) -> AgentResultSummary:
        return cls(
            status=result.status,
            payload_ref=result.payload_ref,
            cost=result.cost,
            chunk_count=result.chunk_count,
            error=result.error,
        )


class ReportResponse(ApiModel):
    report_id: str
    manuscript_id: str
    pipeline_spec_id: str
    status: str
    progress: float
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_cost: float
    error_reason: str | None = None
    results: dict[str, AgentResultSummary] = Field(default_factory=dict)
    errors: list[ErrorDescriptor] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: ReportAggregate) -> ReportResponse:
        return cls(
            report_id=report.id,
            manuscript_id=report.manuscript_id,
            pipeline_spec_id=report.pipeline_spec_id,
            status=report.status,
            progress=report.progress,
            started_at=report.started_at,
            completed_at=report.completed_at,
            total_cost=report.total_cost,
            error_reason=report.error_reason,
            results={k: AgentResultSummary.from_result(r) for k, r in report.results.items()},
            errors=report.errors,
        )


class PayloadResponse(ApiModel):
    agent_kind: str
    status: str
    payload: Any = None


class ErrorResponse(ApiModel):
    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

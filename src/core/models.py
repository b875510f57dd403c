# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types — all imports come from core.models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from galley.core.errors import ErrorDescriptor

# === AGENTS ===

AgentKind = Literal[
    "developmental_edit",
    "line_edit",
    "copy_edit",
    "market_analysis",
    "comp_titles",
    "marketing_hooks",
    "cover_brief",
    "back_matter",
    "author_bio",
    "positioning_report",
]

AGENT_KINDS: tuple[str, ...] = (
    "developmental_edit",
    "line_edit",
    "copy_edit",
    "market_analysis",
    "comp_titles",
    "marketing_hooks",
    "cover_brief",
    "back_matter",
    "author_bio",
    "positioning_report",
)

# === STATUS VOCABULARIES ===

AgentCallStatus = Literal["ok", "retryable_error", "permanent_error", "parse_error"]
AgentResultStatus = Literal["complete", "partial", "failed", "skipped"]
ReportStatus = Literal["queued", "running", "complete", "partial", "failed"]
ChunkBoundary = Literal["whole", "chapter", "paragraph", "fallback"]
ChunkStrategy = Literal["whole", "chapter", "paragraph"]
PlanTier = Literal["free", "pro", "enterprise"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "partial", "failed"})


# === MANUSCRIPT ===


class Manuscript(BaseModel):
    """Uploaded manuscript metadata. The text lives in the blob store."""

    id: str
    owner_id: str
    title: str
    genre: str = "general"
    word_count: int = 0
    source_ref: str
    created_at: datetime


class Chunk(BaseModel):
    """Contiguous slice of a manuscript, ordered by ordinal."""

    manuscript_id: str = ""
    ordinal: int
    byte_start: int
    byte_end: int
    char_start: int
    char_end: int
    token_count_est: int
    boundary: ChunkBoundary
    heading: str | None = None
    content: str = Field(default="", repr=False)

    @property
    def byte_range(self) -> tuple[int, int]:
        return (self.byte_start, self.byte_end)


class ManuscriptStructure(BaseModel):
    """Chapter statistics computed on the raw text."""

    total_words: int
    chapter_count: int
    avg_chapter_words: int
    headings: list[str] = Field(default_factory=list)


# === LEDGER ===


class AgentCall(BaseModel):
    """One provider attempt. Immutable once written to the ledger."""

    id: str
    report_id: str | None = None
    owner_id: str
    manuscript_id: str | None = None
    agent_kind: str | None = None
    prompt_version: str | None = None
    chunk_ordinal: int | None = None
    input_hash: str = ""
    model: str
    tokens_in: int = 0
    tokens_out: int = 0
    price: float = 0.0
    status: AgentCallStatus
    failure_kind: str | None = None
    wall_time_ms: int = 0
    attempt: int = 1
    entry_kind: Literal["call", "correction"] = "call"
    note: str = ""
    created_at: datetime


class CostLedgerEntry(BaseModel):
    """Billing view of an AgentCall row aligned with owner and period."""

    call_id: str
    owner_id: str
    report_id: str | None
    agent_kind: str | None
    model: str
    price: float
    period: str
    entry_kind: Literal["call", "correction"]
    created_at: datetime

    @classmethod
    def from_call(cls, call: AgentCall) -> CostLedgerEntry:
        return cls(
            call_id=call.id,
            owner_id=call.owner_id,
            report_id=call.report_id,
            agent_kind=call.agent_kind,
            model=call.model,
            price=call.price,
            period=billing_period(call.created_at),
            entry_kind=call.entry_kind,
            created_at=call.created_at,
        )


def billing_period(moment: datetime) -> str:
    """Return the UTC YYYY-MM billing period containing a timestamp."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


# === RESULTS ===


class AgentResult(BaseModel):
    """Consolidated outcome of one agent for one report."""

    report_id: str = ""
    manuscript_id: str = ""
    agent_kind: str
    status: AgentResultStatus
    payload: Any = None
    payload_ref: str | None = None
    error: ErrorDescriptor | None = None
    cost: float = 0.0
    call_ids: list[str] = Field(default_factory=list)
    prompt_version: str | None = None
    chunk_count: int = 0
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in ("complete", "partial")


class ReportAggregate(BaseModel):
    """One pipeline execution for one manuscript."""

    id: str
    manuscript_id: str
    owner_id: str
    pipeline_spec_id: str
    status: ReportStatus = "queued"
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_cost: float = 0.0
    agent_count: int = 0
    results: dict[str, AgentResult] = Field(default_factory=dict)
    errors: list[ErrorDescriptor] = Field(default_factory=list)
    error_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> float:
        """Fraction of pipeline agents with a recorded result."""
        if self.agent_count <= 0:
            return 1.0 if self.is_terminal else 0.0
        return min(1.0, len(self.results) / self.agent_count)


# === PIPELINE SPEC ===


class ChunkingPolicy(BaseModel):
    """How an agent consumes the manuscript.

    ``excerpt`` sends a single leading excerpt sized from the template's
    input hint; the other modes run the chunker and fan out one call per
    chunk.
    """

    mode: Literal["excerpt", "whole", "chapter", "paragraph"] = "excerpt"
    max_tokens_per_chunk: int = 24_000
    excerpt_chars: int | None = None

    @property
    def chunked(self) -> bool:
        return self.mode != "excerpt"


class PipelineAgent(BaseModel):
    """A node of the pipeline DAG."""

    kind: AgentKind
    requires: list[AgentKind] = Field(default_factory=list)
    uses: list[AgentKind] = Field(default_factory=list)
    required: bool = True
    chunking: ChunkingPolicy = Field(default_factory=ChunkingPolicy)
    prompt_version: str | None = None

    @property
    def inputs(self) -> list[str]:
        return [*self.requires, *self.uses]


class PipelineSpec(BaseModel):
    """Declarative DAG of agents for one analysis run."""

    id: str
    version: str = "1"
    description: str = ""
    agents: list[PipelineAgent]

    @property
    def kinds(self) -> list[str]:
        return [a.kind for a in self.agents]

    def agent(self, kind: str) -> PipelineAgent:
        for entry in self.agents:
            if entry.kind == kind:
                return entry
        raise KeyError(kind)


# === QUOTAS & EVENTS ===


class Quota(BaseModel):
    """Plan-derived limits for an owner."""

    owner_id: str
    plan: PlanTier = "free"
    max_running_reports: int
    max_monthly_cost: float
    max_calls_per_minute: int
    max_reports_per_month: int


LifecycleEventName = Literal["queued", "running", "complete", "partial", "failed", "persisted"]


class LifecycleEvent(BaseModel):
    """Report lifecycle notification emitted by the dispatcher."""

    report_id: str
    event: LifecycleEventName
    at: datetime
    detail: dict[str, Any] = Field(default_factory=dict)

# tests/unit/core/test_unit_models.py — v2
"""Tests for core/models.py, core/errors.py and core/cancellation.py."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from galley.core.cancellation import CancellationToken
from galley.core.errors import AdmissionError, GalleyError, InvalidPipelineError, NotFoundError
from galley.core.models import (
    AGENT_KINDS,
    AgentCall,
    AgentResult,
    ChunkingPolicy,
    CostLedgerEntry,
    PipelineAgent,
    PipelineSpec,
    ReportAggregate,
    billing_period,
)

NOW = datetime(2026, 3, 31, 23, 30, tzinfo=timezone.utc)


class TestBillingPeriod:
    def test_utc(self):
        assert billing_period(NOW) == "2026-03"

    def test_offset_is_normalized_to_utc(self):
        local = NOW.astimezone(timezone(timedelta(hours=2)))
        assert local.month == 4
        assert billing_period(local) == "2026-03"


class TestLedgerEntry:
    def test_from_call(self):
        call = AgentCall(
            id="c1", owner_id="o1", report_id="r1", agent_kind="copy_edit",
            model="m", price=0.25, status="ok", created_at=NOW,
        )
        entry = CostLedgerEntry.from_call(call)
        assert entry.call_id == "c1"
        assert entry.period == "2026-03"
        assert entry.entry_kind == "call"
        assert entry.price == 0.25


class TestResults:
    @pytest.mark.parametrize(
        "status, succeeded",
        [("complete", True), ("partial", True), ("failed", False), ("skipped", False)],
    )
    def test_succeeded(self, status, succeeded):
        assert AgentResult(agent_kind="copy_edit", status=status).succeeded is succeeded

    def test_progress(self):
        report = ReportAggregate(
            id="r", manuscript_id="m", owner_id="o", pipeline_spec_id="p",
            created_at=NOW, agent_count=4,
            results={"copy_edit": AgentResult(agent_kind="copy_edit", status="complete")},
        )
        assert report.progress == 0.25
        assert not report.is_terminal

    def test_progress_without_agents(self):
        report = ReportAggregate(
            id="r", manuscript_id="m", owner_id="o", pipeline_spec_id="p",
            created_at=NOW, status="failed",
        )
        assert report.progress == 1.0


class TestPipelineSpec:
    def test_inputs_and_lookup(self):
        spec = PipelineSpec(
            id="p",
            agents=[
                PipelineAgent(kind="market_analysis"),
                PipelineAgent(kind="positioning_report", requires=["market_analysis"],
                              uses=["comp_titles"]),
            ],
        )
        assert spec.kinds == ["market_analysis", "positioning_report"]
        assert spec.agent("positioning_report").inputs == ["market_analysis", "comp_titles"]
        with pytest.raises(KeyError):
            spec.agent("copy_edit")

    def test_unknown_agent_kind_rejected(self):
        with pytest.raises(ValueError):
            PipelineAgent(kind="summarizer")  # type: ignore[arg-type]

    def test_chunking_policy(self):
        assert not ChunkingPolicy().chunked
        assert ChunkingPolicy(mode="chapter").chunked

    def test_agent_kinds_closed_set(self):
        assert len(AGENT_KINDS) == 10
        assert "positioning_report" in AGENT_KINDS


class TestErrors:
    def test_kind_override_and_descriptor(self):
        err = AdmissionError("too many", kind="quota_exhausted", limit="max_running_reports")
        descriptor = err.descriptor("copy_edit")
        assert descriptor.kind == "quota_exhausted"
        assert descriptor.message == "too many"
        assert descriptor.agent_kind == "copy_edit"
        assert descriptor.details == {"limit": "max_running_reports"}

    def test_class_kinds(self):
        assert NotFoundError().kind == "unknown_report"
        assert InvalidPipelineError("x").kind == "invalid_pipeline"
        assert GalleyError().kind == "internal"
        assert str(NotFoundError()) == "unknown_report"


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_first_cancel_wins(self):
        token = CancellationToken()
        assert token.cancel("supervisor_timeout")
        assert not token.cancel("cancelled")
        assert token.reason == "supervisor_timeout"
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_sleep_returns_early_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        assert await token.sleep(5.0) is True

    @pytest.mark.asyncio
    async def test_sleep_times_out(self):
        assert await CancellationToken().sleep(0.001) is False

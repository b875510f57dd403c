# tests/unit/pipeline/test_unit_orchestrator.py — v2
"""Tests for pipeline/orchestrator.py."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from galley.core.cancellation import CancellationToken
from galley.core.errors import ErrorDescriptor, InvalidTransitionError
from galley.core.models import AgentResult
from galley.llm.models import ProviderError
from galley.pipeline.dag_builder import build_plan
from galley.pipeline.orchestrator import PipelineOrchestrator, compose_status
from galley.tracking.cost_calculator import compute_price

PRICE = compute_price("claude-sonnet-4-20250514", 1000, 200)


async def _queued(services, text: str, spec_id: str = "full_analysis_v1"):
    manuscript = await services.manuscripts.register("o1", "Tide", text, genre="literary")
    spec = services.pipelines[spec_id]
    report_id = services.reports.create(manuscript.id, spec_id, "o1", agent_count=len(spec.agents))
    return report_id, build_plan(spec, services.prompts)


def _needle(services, kind: str) -> str:
    return services.prompts.resolve(kind).output_schema.describe()


class TestComposeStatus:
    def _plan(self, services):
        return build_plan(services.pipelines["marketing_v1"], services.prompts)

    def _results(self, **statuses: str) -> dict[str, AgentResult]:
        return {
            kind: AgentResult(
                agent_kind=kind, status=status,
                error=None if status == "complete" else ErrorDescriptor(kind="transport"),
            )
            for kind, status in statuses.items()
        }

    def test_complete_ignores_optional_agents(self, services):
        results = self._results(
            market_analysis="complete", comp_titles="complete", marketing_hooks="complete",
            back_matter="failed", positioning_report="complete",
        )
        assert compose_status(self._plan(services), results, CancellationToken()) == (
            "complete", None,
        )

    def test_partial(self, services):
        results = self._results(
            market_analysis="complete", comp_titles="failed", marketing_hooks="complete",
            back_matter="complete", positioning_report="skipped",
        )
        assert compose_status(self._plan(services), results, CancellationToken())[0] == "partial"

    def test_partial_budget_reason(self, services):
        results = self._results(market_analysis="complete", comp_titles="complete")
        results["marketing_hooks"] = AgentResult(
            agent_kind="marketing_hooks", status="skipped",
            error=ErrorDescriptor(kind="budget_exhausted"),
        )
        assert compose_status(self._plan(services), results, CancellationToken()) == (
            "partial", "budget_exhausted",
        )

    def test_failed_with_first_error(self, services):
        results = self._results(
            market_analysis="failed", comp_titles="failed", marketing_hooks="skipped",
            back_matter="complete", positioning_report="skipped",
        )
        assert compose_status(self._plan(services), results, CancellationToken()) == (
            "failed", "transport",
        )

    def test_cancelled(self, services):
        token = CancellationToken()
        token.cancel("supervisor_timeout")
        results = self._results(market_analysis="complete")
        assert compose_status(self._plan(services), results, token) == (
            "failed", "supervisor_timeout",
        )


class TestOrchestratorRun:
    @pytest.mark.asyncio
    async def test_full_analysis_completes(self, services, manuscript_text):
        report_id, plan = await _queued(services, manuscript_text)
        events = []
        status = await PipelineOrchestrator(services).run(
            report_id, plan, CancellationToken(), on_event=events.append
        )
        assert status == "complete"

        report = services.reports.get(report_id)
        assert report.status == "complete"
        assert set(report.results) == set(plan.flat_order)
        assert report.progress == 1.0
        # 3 chapter chunks + 9 single-call agents
        assert services.ledger.report_call_count(report_id) == 12
        assert report.total_cost == pytest.approx(12 * PRICE)
        assert report.total_cost == pytest.approx(sum(r.cost for r in report.results.values()))

        names = [e.event for e in events]
        assert names[0] == "running"
        assert names[-1] == "complete"
        assert names.count("persisted") == len(plan.flat_order)

    @pytest.mark.asyncio
    async def test_dependencies_finish_before_dependents_start(self, services, llm, manuscript_text):
        order: list[str] = []
        llm.on_request = lambda messages: order.append(llm.agent_for(messages))
        report_id, plan = await _queued(services, manuscript_text)
        await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())
        assert order.index("positioning_report") > order.index("comp_titles")
        assert order.index("comp_titles") > order.index("market_analysis")

    @pytest.mark.asyncio
    async def test_optional_failure_keeps_complete(self, services, llm, manuscript_text):
        llm.script(_needle(services, "author_bio"), ProviderError("client_error"))
        report_id, plan = await _queued(services, manuscript_text)
        status = await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())
        assert status == "complete"
        report = services.reports.get(report_id)
        assert report.results["author_bio"].status == "failed"
        assert [e.kind for e in report.errors] == ["client_error"]

    @pytest.mark.asyncio
    async def test_required_failure_is_partial(self, services, llm, manuscript_text):
        llm.script(_needle(services, "copy_edit"), ProviderError("client_error"))
        report_id, plan = await _queued(services, manuscript_text)
        status = await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())
        assert status == "partial"

    @pytest.mark.asyncio
    async def test_failed_requirement_skips_dependents(self, services, llm, manuscript_text):
        llm.script(_needle(services, "market_analysis"), ProviderError("client_error"))
        report_id, plan = await _queued(services, manuscript_text)
        await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())
        results = services.reports.get(report_id).results
        assert results["market_analysis"].status == "failed"
        # optional input: runs without it
        assert results["comp_titles"].status == "complete"
        for kind in ("marketing_hooks", "positioning_report"):
            assert results[kind].status == "skipped"
            assert results[kind].error.kind == "dependency_failed"
            assert "market_analysis" in results[kind].error.details["dependencies"]
        assert llm.requests_for("positioning_report") == []

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, services, llm, manuscript_text):
        report_id, plan = await _queued(services, manuscript_text)
        token = CancellationToken()
        token.cancel("cancelled")
        status = await PipelineOrchestrator(services).run(report_id, plan, token)
        assert status == "failed"
        report = services.reports.get(report_id)
        assert report.error_reason == "cancelled"
        assert {r.status for r in report.results.values()} == {"skipped"}
        assert len(report.results) == len(plan.flat_order)
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, make_services, llm, manuscript_text):
        services = make_services(pipeline_max_concurrency=2)
        llm.delay = 0.01
        report_id, plan = await _queued(services, manuscript_text)
        await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())
        assert 1 < llm.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_report_must_be_queued(self, services, manuscript_text):
        report_id, plan = await _queued(services, manuscript_text)
        services.reports.transition(report_id, "queued", "running")
        with pytest.raises(InvalidTransitionError):
            await PipelineOrchestrator(services).run(report_id, plan, CancellationToken())

    @pytest.mark.asyncio
    async def test_crash_fails_every_agent(self, services, manuscript_text, monkeypatch):
        report_id, plan = await _queued(services, manuscript_text)
        monkeypatch.setattr(
            services.manuscripts, "load_text", AsyncMock(side_effect=RuntimeError("disk gone"))
        )
        events = []
        status = await PipelineOrchestrator(services).run(
            report_id, plan, CancellationToken(), on_event=events.append
        )
        assert status == "failed"
        report = services.reports.get(report_id)
        assert report.error_reason == "internal"
        assert len(report.results) == len(plan.flat_order)
        assert {r.error.kind for r in report.results.values()} == {"internal"}
        assert events[-1].event == "failed"

# src/pipeline/orchestrator.py — v2
"""Pipeline orchestrator — run one report's DAG to a terminal state.

The orchestrator is the single writer of its report. It transitions the
report to ``running``, launches every agent as soon as its dependencies
have finished, persists each AgentResult as it arrives, and finally
composes the report status from the required agents:

- ``complete`` when every required agent is complete;
- ``partial`` when at least one required agent succeeded and another did not;
- ``failed`` when none succeeded or the run was cancelled.

Every AgentResult is written before the terminal transition.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from galley.core.cancellation import CancellationToken
from galley.core.errors import ErrorDescriptor, InvalidTransitionError
from galley.core.models import AgentResult, LifecycleEvent, ReportStatus, billing_period
from galley.logging.context import clear_context, set_report_context
from galley.pipeline.budget import BudgetGuard
from galley.pipeline.context import RunContext, ServiceContext
from galley.pipeline.dag_builder import ExecutionPlan
from galley.pipeline.runner import AgentRunner

logger = logging.getLogger(__name__)

EventSink = Callable[[LifecycleEvent], None]


def compose_status(
    plan: ExecutionPlan,
    results: dict[str, AgentResult],
    token: CancellationToken,
) -> tuple[ReportStatus, str | None]:
    """Overall report status and reason from the per-agent results."""
    if token.cancelled:
        return "failed", token.reason or "cancelled"

    required = [a.kind for a in plan.spec.agents if a.required]
    outcomes = [results[k] for k in required if k in results]
    if all(r.status == "complete" for r in outcomes) and len(outcomes) == len(required):
        return "complete", None
    if any(r.succeeded for r in outcomes):
        blocked = any(
            r.error is not None and r.error.kind == "budget_exhausted" for r in results.values()
        )
        return "partial", "budget_exhausted" if blocked else None
    first = next((r.error for r in outcomes if r.error is not None), None)
    return "failed", first.kind if first is not None else "internal"


class PipelineOrchestrator:
    """Drive a validated ExecutionPlan for one queued report."""

    def __init__(self, services: ServiceContext, runner: AgentRunner | None = None) -> None:
        self._services = services
        self._runner = runner or AgentRunner(services)

    async def run(
        self,
        report_id: str,
        plan: ExecutionPlan,
        token: CancellationToken,
        on_event: EventSink | None = None,
    ) -> ReportStatus:
        """Run the report to completion and return its terminal status.

        Raises:
            InvalidTransitionError: The report was not ``queued``.
        """
        services = self._services
        report = services.reports.get(report_id)
        set_report_context(report_id, report.manuscript_id)
        services.reports.transition(report_id, "queued", "running")
        self._emit(on_event, report_id, "running")

        started = time.monotonic()
        run: RunContext | None = None
        tasks: dict[asyncio.Task[AgentResult], str] = {}
        try:
            manuscript = services.manuscripts.get(report.manuscript_id)
            if manuscript is None:
                raise LookupError(f"Manuscript {report.manuscript_id} disappeared")
            text = await services.manuscripts.load_text(manuscript)
            quota = services.quotas.quota(report.owner_id)
            run = RunContext(
                report_id=report_id,
                owner_id=report.owner_id,
                manuscript=manuscript,
                text=text,
                plan=plan,
                token=token,
                semaphore=asyncio.Semaphore(services.settings.pipeline_max_concurrency),
                budget=BudgetGuard(
                    services.ledger,
                    report_id,
                    report.owner_id,
                    billing_period(services.clock.now()),
                    report_ceiling=services.settings.report_cost_ceiling_usd,
                    monthly_limit=quota.max_monthly_cost,
                ),
                cache_enabled=services.settings.run_cache_enabled,
            )
            await self._schedule(run, tasks, on_event)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        except Exception as e:
            logger.exception("Report %s crashed", report_id)
            for task in tasks:
                task.cancel()
            status = await self._fail_remaining(report_id, report.manuscript_id, plan, run, e)
            self._emit(on_event, report_id, status)
            clear_context()
            return status

        status, reason = compose_status(plan, run.results, token)
        errors = [r.error for r in run.results.values() if r.error is not None]
        final = self._finish(report_id, status, reason, errors)
        logger.info(
            "Report %s finished: status=%s reason=%s agents=%d cost=%.6f in %.1fs",
            report_id, final, reason, len(run.results),
            services.ledger.report_total(report_id), time.monotonic() - started,
        )
        self._emit(on_event, report_id, final, reason=reason)
        clear_context()
        return final

    async def _schedule(
        self,
        run: RunContext,
        tasks: dict[asyncio.Task[AgentResult], str],
        on_event: EventSink | None,
    ) -> None:
        """Launch agents as their dependencies finish until all have results."""
        plan = run.plan
        pending = list(plan.flat_order)

        while pending or tasks:
            for kind in list(pending):
                deps = plan.dependencies(kind)
                if any(d not in run.results for d in deps):
                    continue
                pending.remove(kind)
                blocked = self._blocked_result(kind, run)
                if blocked is not None:
                    await self._persist(run, blocked, on_event)
                    continue
                task = asyncio.create_task(
                    self._runner.run(kind, run.manuscript.id, run), name=f"agent:{kind}"
                )
                tasks[task] = kind

            if not tasks:
                if pending:
                    # Unreachable for a validated plan
                    raise RuntimeError(f"Agents {pending} can never be scheduled")
                break

            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                tasks.pop(task)
                await self._persist(run, task.result(), on_event)

    def _blocked_result(self, kind: str, run: RunContext) -> AgentResult | None:
        """Result for an agent that must not start, else None."""
        if run.token.cancelled:
            return self._skipped(kind, run, "cancelled", run.token.reason or "cancelled")
        failed = [
            dep for dep in run.plan.requires.get(kind, [])
            if not run.results[dep].succeeded
        ]
        if failed:
            return self._skipped(
                kind, run, "dependency_failed",
                f"Required input {failed[0]} did not succeed", dependencies=failed,
            )
        return None

    @staticmethod
    def _skipped(kind: str, run: RunContext, error_kind: str, message: str, **details: Any
                 ) -> AgentResult:
        logger.info("Agent %s skipped: %s", kind, error_kind)
        return AgentResult(
            report_id=run.report_id,
            manuscript_id=run.manuscript.id,
            agent_kind=kind,
            status="skipped",
            error=ErrorDescriptor(
                kind=error_kind, message=message, agent_kind=kind, details=details
            ),
        )

    async def _persist(
        self, run: RunContext, result: AgentResult, on_event: EventSink | None
    ) -> None:
        run.results[result.agent_kind] = result
        stored = await self._services.reports.put_agent_result(run.report_id, result)
        self._emit(
            on_event, run.report_id, "persisted",
            agent_kind=stored.agent_kind, status=stored.status, payload_ref=stored.payload_ref,
        )

    async def _fail_remaining(
        self,
        report_id: str,
        manuscript_id: str,
        plan: ExecutionPlan,
        run: RunContext | None,
        exc: Exception,
    ) -> ReportStatus:
        """Record ``internal`` failures for agents without a result, then fail."""
        have = set(run.results) if run is not None else set()
        error = ErrorDescriptor(kind="internal", message=str(exc))
        try:
            for kind in plan.flat_order:
                if kind in have:
                    continue
                await self._services.reports.put_agent_result(
                    report_id,
                    AgentResult(
                        report_id=report_id,
                        manuscript_id=manuscript_id,
                        agent_kind=kind,
                        status="failed",
                        error=error.model_copy(update={"agent_kind": kind}),
                    ),
                )
        except InvalidTransitionError:
            logger.warning("Report %s became terminal during crash cleanup", report_id)
            return self._services.reports.status(report_id)
        return self._finish(report_id, "failed", "internal", [error])

    def _finish(
        self,
        report_id: str,
        status: ReportStatus,
        reason: str | None,
        errors: list[ErrorDescriptor],
    ) -> ReportStatus:
        try:
            self._services.reports.transition(
                report_id, "running", status, error_reason=reason, errors=errors
            )
        except InvalidTransitionError:
            # Already force-failed by the supervisor
            current = self._services.reports.status(report_id)
            logger.warning("Report %s already %s; dropping %s", report_id, current, status)
            return current
        return status

    def _emit(self, sink: EventSink | None, report_id: str, event: str, **detail: Any) -> None:
        if sink is None:
            return
        sink(LifecycleEvent(
            report_id=report_id, event=event, at=self._services.clock.now(), detail=detail,
        ))

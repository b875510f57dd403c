# src/pipeline/dispatcher.py — v2
"""Job dispatcher — admission control and background hand-off.

``admit`` checks, in order: the manuscript exists, the caller owns it, the
pipeline is valid, no active report already holds the (manuscript,
pipeline) slot, the plan's quotas (concurrent reports, admissions per
minute), the monthly spend, and finally consumes one report from the
monthly allowance. Admission for one owner is serialized by a per-owner
lock; the monthly counter itself is a compare-and-set in the database.

Admitted reports run in the background under the process-wide semaphore
G, each watched by the Supervisor. No model I/O happens on the caller's
path.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from galley.core.cancellation import CancellationToken
from galley.core.errors import (
    AdmissionError,
    ForbiddenError,
    InvalidPipelineError,
)
from galley.core.models import LifecycleEvent, PipelineSpec, ReportAggregate, billing_period
from galley.pipeline.context import ServiceContext
from galley.pipeline.dag_builder import ExecutionPlan, build_plan
from galley.pipeline.orchestrator import PipelineOrchestrator
from galley.pipeline.supervisor import Supervisor
from galley.storage.report_store import ActiveReportExistsError

logger = logging.getLogger(__name__)

RATE_WINDOW = timedelta(minutes=1)

Listener = Callable[[LifecycleEvent], None]


@dataclass(frozen=True)
class Admission:
    report_id: str
    status: str
    created: bool


@dataclass
class _ActiveRun:
    token: CancellationToken
    task: asyncio.Task[None]


@dataclass
class _OwnerLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class JobDispatcher:
    """Admit reports and run them in the background."""

    def __init__(
        self,
        services: ServiceContext,
        orchestrator: PipelineOrchestrator | None = None,
        supervisor: Supervisor | None = None,
    ) -> None:
        self._services = services
        self._orchestrator = orchestrator or PipelineOrchestrator(services)
        self.supervisor = supervisor or Supervisor(services)
        self._pipelines_slots = asyncio.Semaphore(services.settings.process_max_pipelines)
        self._owner_locks: dict[str, _OwnerLock] = {}
        self._admissions: dict[str, deque[datetime]] = {}
        self._runs: dict[str, _ActiveRun] = {}
        self._listeners: list[Listener] = []

    @property
    def active_reports(self) -> list[str]:
        return list(self._runs)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # --- Admission ---

    async def admit(
        self,
        owner_id: str,
        manuscript_id: str,
        pipeline_spec_id: str,
        exclusive: bool = False,
    ) -> Admission:
        """Admit a report or return the active one for the same slot.

        With ``exclusive=True`` an active report is an ``already_running``
        rejection instead of an idempotent reuse.

        Raises:
            AdmissionError: unknown_manuscript, unauthorized, quota_exhausted
                or spend_ceiling_reached.
            InvalidPipelineError: Unknown or invalid pipeline spec.
            ActiveReportExistsError: Exclusive admission on an active slot.
        """
        services = self._services
        manuscript = services.manuscripts.get(manuscript_id)
        if manuscript is None:
            raise AdmissionError(
                f"Unknown manuscript {manuscript_id}", kind="unknown_manuscript"
            )
        if manuscript.owner_id != owner_id:
            raise AdmissionError(
                f"Manuscript {manuscript_id} does not belong to {owner_id}", kind="unauthorized"
            )
        spec = services.pipelines.get(pipeline_spec_id)
        if spec is None:
            raise InvalidPipelineError(f"Unknown pipeline {pipeline_spec_id}")
        plan = build_plan(spec, services.prompts)

        owner_lock = self._owner_locks.setdefault(owner_id, _OwnerLock())
        owner_lock.holders += 1
        try:
            async with owner_lock.lock:
                admission = self._admit_locked(owner_id, manuscript_id, spec, exclusive)
        finally:
            owner_lock.holders -= 1
            if owner_lock.holders == 0:
                del self._owner_locks[owner_id]
            self._prune_windows(services.clock.now())
        if not admission.created:
            return admission

        self._emit(LifecycleEvent(
            report_id=admission.report_id, event="queued", at=services.clock.now(),
            detail={"owner_id": owner_id, "pipeline_spec_id": pipeline_spec_id},
        ))
        self._launch(admission.report_id, plan)
        return admission

    def _admit_locked(
        self, owner_id: str, manuscript_id: str, spec: PipelineSpec, exclusive: bool
    ) -> Admission:
        services = self._services
        pipeline_spec_id = spec.id
        existing = services.reports.find_active(manuscript_id, pipeline_spec_id)
        if existing is not None:
            return self._reuse(existing, exclusive)

        now = services.clock.now()
        period = billing_period(now)
        quota = services.quotas.quota(owner_id)

        running = services.reports.count_active(owner_id)
        if running >= quota.max_running_reports:
            raise AdmissionError(
                f"{running} report(s) already in flight (limit {quota.max_running_reports})",
                kind="quota_exhausted", limit="max_running_reports",
            )
        window = self._admission_window(owner_id, now)
        if len(window) >= quota.max_calls_per_minute:
            raise AdmissionError(
                f"More than {quota.max_calls_per_minute} admissions in the last minute",
                kind="quota_exhausted", limit="max_calls_per_minute",
            )
        spent = services.ledger.owner_period_total(owner_id, period)
        if spent >= quota.max_monthly_cost:
            raise AdmissionError(
                f"Monthly spend {spent:.4f} reached the {quota.max_monthly_cost:.2f} limit",
                kind="spend_ceiling_reached", spent=spent, limit=quota.max_monthly_cost,
            )
        if not services.quotas.try_consume_report(
            owner_id, period, quota.max_reports_per_month
        ):
            raise AdmissionError(
                f"Monthly report allowance of {quota.max_reports_per_month} used",
                kind="quota_exhausted", limit="max_reports_per_month",
            )

        try:
            report_id = services.reports.create(
                manuscript_id, pipeline_spec_id, owner_id, agent_count=len(spec.agents)
            )
        except ActiveReportExistsError as e:
            # Another process won the slot between the check and the insert
            services.quotas.release_report(owner_id, period)
            return self._reuse(e.details["report_id"], exclusive)
        window.append(now)
        return Admission(report_id=report_id, status="queued", created=True)

    def _reuse(self, report_id: str, exclusive: bool) -> Admission:
        if exclusive:
            raise ActiveReportExistsError(
                f"Report {report_id} is already active", report_id=report_id
            )
        logger.info("Reusing active report %s", report_id)
        return Admission(
            report_id=report_id,
            status=self._services.reports.status(report_id),
            created=False,
        )

    def _admission_window(self, owner_id: str, now: datetime) -> deque[datetime]:
        window = self._admissions.setdefault(owner_id, deque())
        while window and now - window[0] >= RATE_WINDOW:
            window.popleft()
        return window

    def _prune_windows(self, now: datetime) -> None:
        """Forget owners with no admission inside the rate window."""
        stale = [
            owner for owner, window in self._admissions.items()
            if not window or now - window[-1] >= RATE_WINDOW
        ]
        for owner in stale:
            del self._admissions[owner]

    # --- Execution ---

    def _launch(self, report_id: str, plan: ExecutionPlan) -> None:
        token = CancellationToken()
        task = asyncio.create_task(self._execute(report_id, plan, token), name=f"report:{report_id}")
        self._runs[report_id] = _ActiveRun(token=token, task=task)

    async def _execute(self, report_id: str, plan: ExecutionPlan, token: CancellationToken) -> None:
        try:
            async with self._pipelines_slots:
                orchestration = asyncio.create_task(
                    self._orchestrator.run(report_id, plan, token, on_event=self._emit),
                    name=f"orchestrator:{report_id}",
                )
                await self.supervisor.watch(report_id, token, orchestration)
                if not orchestration.cancelled() and orchestration.exception() is not None:
                    logger.error(
                        "Orchestrator for %s raised", report_id,
                        exc_info=orchestration.exception(),
                    )
                    await self.supervisor.force_fail(report_id, "internal")
        finally:
            self._runs.pop(report_id, None)

    async def cancel(self, report_id: str, owner_id: str | None = None) -> str:
        """Request cancellation; returns ``cancelling`` or the terminal status.

        Raises:
            NotFoundError: Unknown report.
            ForbiddenError: The report belongs to another owner.
        """
        report = self._services.reports.get(report_id)
        if owner_id is not None and report.owner_id != owner_id:
            raise ForbiddenError(f"Report {report_id} belongs to another owner")
        if report.is_terminal:
            return report.status

        active = self._runs.get(report_id)
        if active is not None:
            if active.token.cancel("cancelled"):
                logger.info("Cancellation requested for report %s", report_id)
        else:
            # Orphaned by a previous process
            await self.supervisor.force_fail(report_id, "cancelled")
        return "cancelling"

    async def wait(self, report_id: str, timeout: float | None = None) -> ReportAggregate:
        """Wait for the in-process run of a report and return its final state."""
        active = self._runs.get(report_id)
        if active is not None:
            await asyncio.wait({active.task}, timeout=timeout)
        return self._services.reports.get(report_id)

    async def sweep(self) -> list[str]:
        return await self.supervisor.sweep(exclude=set(self._runs))

    def start(self) -> None:
        """Start the periodic supervisor sweep."""
        self.supervisor.start(exclude=lambda: set(self._runs))

    async def shutdown(self, timeout: float | None = None) -> None:
        """Cancel every in-flight run and wait for them to settle."""
        await self.supervisor.stop()
        runs = list(self._runs.values())
        for run in runs:
            run.token.cancel("cancelled")
        if runs:
            await asyncio.wait({r.task for r in runs}, timeout=timeout)

    # --- Events ---

    def _emit(self, event: LifecycleEvent) -> None:
        logger.info("Report %s: %s %s", event.report_id, event.event, event.detail or "")
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Lifecycle listener failed on %s", event.event)

# src/pipeline/supervisor.py — v1
"""Supervisor — guarantee that every report reaches a terminal state.

Two mechanisms:

- ``watch`` guards an in-process run: after the max wall time it cancels
  the run's token with reason ``supervisor_timeout``, waits the grace
  period for the orchestrator to wind down, then stops the task and
  force-fails the report.
- ``sweep`` scans the store for reports stuck in ``running`` (or never
  started from ``queued``) past the wall time, e.g. after a process crash,
  and force-fails them.

Force-failing first records a ``failed`` AgentResult for every pipeline
agent without one, so a terminal report always has one result per agent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection
from datetime import timedelta
from typing import Any

from galley.core.cancellation import CancellationToken
from galley.core.errors import ErrorDescriptor, InvalidTransitionError, NotFoundError
from galley.core.models import AgentResult
from galley.pipeline.context import ServiceContext

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "supervisor_timeout"


class Supervisor:
    def __init__(self, services: ServiceContext) -> None:
        self._services = services
        self._max_wall = services.settings.supervisor_max_wall_time_s
        self._grace = services.settings.supervisor_grace_s
        self._interval = services.settings.supervisor_sweep_interval_s
        self._loop_task: asyncio.Task[None] | None = None

    async def watch(
        self, report_id: str, token: CancellationToken, task: asyncio.Task[Any]
    ) -> None:
        """Wait for an orchestrator task, enforcing the wall-time limit."""
        done, _ = await asyncio.wait({task}, timeout=self._max_wall)
        if task in done:
            return

        logger.warning(
            "Report %s exceeded %.0fs wall time; cancelling", report_id, self._max_wall
        )
        token.cancel(TIMEOUT_REASON)
        done, _ = await asyncio.wait({task}, timeout=self._grace)
        if task in done:
            return

        logger.error("Report %s did not stop within %.0fs grace", report_id, self._grace)
        task.cancel()
        await asyncio.wait({task})
        await self.force_fail(report_id, TIMEOUT_REASON)

    async def force_fail(self, report_id: str, reason: str = TIMEOUT_REASON) -> bool:
        """Drive a non-terminal report to ``failed``. Returns False if it was terminal."""
        reports = self._services.reports
        try:
            report = reports.get(report_id)
        except NotFoundError:
            return False
        if report.is_terminal:
            return False

        try:
            if report.status == "queued":
                reports.transition(report_id, "queued", "running")
            spec = self._services.pipelines.get(report.pipeline_spec_id)
            kinds = spec.kinds if spec is not None else []
            error = ErrorDescriptor(kind=reason, message=f"Report terminated: {reason}")
            for kind in kinds:
                if kind in report.results:
                    continue
                await reports.put_agent_result(
                    report_id,
                    AgentResult(
                        report_id=report_id,
                        manuscript_id=report.manuscript_id,
                        agent_kind=kind,
                        status="failed",
                        error=error.model_copy(update={"agent_kind": kind}),
                    ),
                )
            reports.transition(report_id, "running", "failed", error_reason=reason, errors=[error])
        except InvalidTransitionError:
            # Lost the race against the orchestrator finishing on its own
            logger.info("Report %s reached a terminal state before force-fail", report_id)
            return False
        logger.warning("Report %s force-failed: %s", report_id, reason)
        return True

    async def sweep(self, exclude: Collection[str] = ()) -> list[str]:
        """Force-fail stale reports not owned by a live in-process run."""
        now = self._services.clock.now()
        running_cutoff = now - timedelta(seconds=self._max_wall + self._grace)
        queued_cutoff = now - timedelta(seconds=self._max_wall)
        reports = self._services.reports

        stale = [
            *reports.stale_running(running_cutoff),
            *reports.stale_queued(queued_cutoff),
        ]
        failed = []
        for report_id in stale:
            if report_id in exclude:
                continue
            if await self.force_fail(report_id, TIMEOUT_REASON):
                failed.append(report_id)
        if failed:
            logger.warning("Sweep force-failed %d report(s): %s", len(failed), failed)
        return failed

    # --- Periodic loop ---

    def start(self, exclude: Callable[[], Collection[str]] | None = None) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._loop(exclude), name="supervisor")

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        await asyncio.wait({self._loop_task})
        self._loop_task = None

    async def _loop(self, exclude: Callable[[], Collection[str]] | None) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep(exclude() if exclude is not None else ())
            except Exception:
                logger.exception("Supervisor sweep failed")

# src/storage/quotas.py — v1
"""Owner plans and quota counters.

The monthly report counter is consumed with a compare-and-set UPDATE, so
concurrent admissions for one owner can never exceed the plan limit.
"""

from __future__ import annotations

import logging

from galley.config.settings import Settings
from galley.core.clock import Clock
from galley.core.models import PlanTier, Quota
from galley.storage.database import Database, to_db_time

logger = logging.getLogger(__name__)


class QuotaRepository:
    def __init__(self, db: Database, settings: Settings, clock: Clock) -> None:
        self._db = db
        self._settings = settings
        self._clock = clock

    def plan_for(self, owner_id: str) -> PlanTier:
        row = self._db.query_one("SELECT plan FROM owner_plans WHERE owner_id = ?", (owner_id,))
        return row["plan"] if row else self._settings.default_plan

    def set_plan(self, owner_id: str, plan: PlanTier) -> None:
        self._db.execute(
            """INSERT INTO owner_plans (owner_id, plan, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(owner_id) DO UPDATE SET
                   plan = excluded.plan, updated_at = excluded.updated_at""",
            (owner_id, plan, to_db_time(self._clock.now())),
        )
        logger.info("Owner %s moved to plan %s", owner_id, plan)

    def quota(self, owner_id: str) -> Quota:
        return self._settings.quota_for(owner_id, self.plan_for(owner_id))

    def reports_admitted(self, owner_id: str, period: str) -> int:
        return int(self._db.scalar(
            "SELECT reports_admitted FROM owner_usage WHERE owner_id = ? AND period = ?",
            (owner_id, period), 0,
        ))

    def try_consume_report(self, owner_id: str, period: str, limit: int) -> bool:
        """Increment the period counter if it is below ``limit``."""
        with self._db.transaction():
            self._db.execute(
                "INSERT OR IGNORE INTO owner_usage (owner_id, period, reports_admitted) VALUES (?, ?, 0)",
                (owner_id, period),
            )
            cursor = self._db.execute(
                """UPDATE owner_usage SET reports_admitted = reports_admitted + 1
                   WHERE owner_id = ? AND period = ? AND reports_admitted < ?""",
                (owner_id, period, limit),
            )
        return cursor.rowcount == 1

    def release_report(self, owner_id: str, period: str) -> None:
        """Give back a consumed admission whose report was never created."""
        self._db.execute(
            """UPDATE owner_usage SET reports_admitted = reports_admitted - 1
               WHERE owner_id = ? AND period = ? AND reports_admitted > 0""",
            (owner_id, period),
        )

# src/tracking/budget_alerts.py — v1
"""Platform monthly budget alerts.

After each priced ledger append the platform spend of the current period
is compared against the configured budget. Every threshold fires at most
once per period: the (period, threshold) primary key of ``budget_alerts``
is the dedup.
"""

from __future__ import annotations

import logging
from datetime import datetime

from galley.core.models import billing_period
from galley.storage.database import Database, to_db_time
from galley.tracking.ledger import period_bounds
from galley.tracking.models import BudgetAlert

logger = logging.getLogger(__name__)


class BudgetAlertMonitor:
    def __init__(self, db: Database, monthly_budget: float, thresholds: list[float]) -> None:
        self._db = db
        self._budget = monthly_budget
        self._thresholds = sorted(thresholds)

    def check(self, moment: datetime) -> list[BudgetAlert]:
        """Record and log every newly crossed threshold for the period of ``moment``."""
        if self._budget <= 0:
            return []
        period = billing_period(moment)
        start, end = period_bounds(period)
        spend = float(self._db.scalar(
            "SELECT SUM(price) FROM agent_calls WHERE created_at >= ? AND created_at < ?",
            (start, end), 0.0,
        ))
        pct = spend / self._budget * 100.0

        fired: list[BudgetAlert] = []
        for threshold in self._thresholds:
            if pct < threshold:
                break
            cursor = self._db.execute(
                """INSERT OR IGNORE INTO budget_alerts
                   (period, threshold, spend, budget, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (period, threshold, spend, self._budget, to_db_time(moment)),
            )
            if cursor.rowcount != 1:
                continue
            alert = BudgetAlert(period=period, threshold=threshold, spend=spend, budget=self._budget)
            level = logging.CRITICAL if alert.critical else logging.WARNING
            logger.log(
                level,
                "Platform spend %.2f USD reached %.0f%% of the %.2f USD budget for %s",
                spend, threshold, self._budget, period,
            )
            fired.append(alert)
        return fired

    def alerts(self, period: str) -> list[BudgetAlert]:
        rows = self._db.query(
            "SELECT * FROM budget_alerts WHERE period = ? ORDER BY threshold", (period,)
        )
        return [
            BudgetAlert(period=r["period"], threshold=r["threshold"],
                        spend=r["spend"], budget=r["budget"])
            for r in rows
        ]

# src/tracking/ledger.py — v1
"""Append-only cost ledger over the ``agent_calls`` table.

Only the gateway appends call rows. Rows are never updated or deleted;
corrections are compensating rows with ``entry_kind='correction'``.
Aggregations are range scans over the (report_id) and
(owner_id, created_at) indexes.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from galley.core.models import AgentCall, CostLedgerEntry
from galley.storage.database import Database, from_db_time, to_db_time
from galley.tracking.agent_tracker import aggregate_by_agent, aggregate_by_model
from galley.tracking.models import AgentUsage, DailyCost, ModelUsage, OwnerSpend

if TYPE_CHECKING:
    from galley.tracking.budget_alerts import BudgetAlertMonitor

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "report_id", "owner_id", "manuscript_id", "agent_kind", "prompt_version",
    "chunk_ordinal", "input_hash", "model", "tokens_in", "tokens_out", "price",
    "status", "failure_kind", "wall_time_ms", "attempt", "entry_kind", "note",
    "created_at",
)


def period_bounds(period: str) -> tuple[str, str]:
    """Return [start, end) ISO bounds of a YYYY-MM billing period."""
    year, month = (int(p) for p in period.split("-"))
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=timezone.utc)
    return to_db_time(start), to_db_time(end)  # type: ignore[return-value]


class CostLedger:
    """Append-only record of every provider call's measured price."""

    def __init__(self, db: Database, alerts: BudgetAlertMonitor | None = None) -> None:
        self._db = db
        self._alerts = alerts

    def append(self, call: AgentCall) -> CostLedgerEntry:
        """Write one immutable row. Duplicate ids are rejected by the PK."""
        values = call.model_dump()
        values["created_at"] = to_db_time(call.created_at)
        self._db.execute(
            f"INSERT INTO agent_calls ({', '.join(_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
            [values[c] for c in _COLUMNS],
        )
        logger.debug(
            "Ledger append %s agent=%s status=%s price=%.6f",
            call.id, call.agent_kind, call.status, call.price,
        )
        if self._alerts is not None and call.price:
            self._alerts.check(call.created_at)
        return CostLedgerEntry.from_call(call)

    def append_correction(
        self,
        owner_id: str,
        amount: float,
        created_at: datetime,
        report_id: str | None = None,
        note: str = "",
        model: str = "correction",
    ) -> CostLedgerEntry:
        """Record a compensating entry (negative amount refunds)."""
        call = AgentCall(
            id=uuid.uuid4().hex,
            report_id=report_id,
            owner_id=owner_id,
            model=model,
            price=amount,
            status="ok",
            entry_kind="correction",
            note=note,
            created_at=created_at,
        )
        logger.info("Ledger correction owner=%s amount=%.6f (%s)", owner_id, amount, note)
        return self.append(call)

    # --- Totals ---

    def report_total(self, report_id: str) -> float:
        return float(self._db.scalar(
            "SELECT SUM(price) FROM agent_calls WHERE report_id = ?", (report_id,), 0.0
        ))

    def report_call_count(self, report_id: str) -> int:
        return int(self._db.scalar(
            "SELECT COUNT(*) FROM agent_calls WHERE report_id = ? AND entry_kind = 'call'",
            (report_id,), 0,
        ))

    def owner_period_total(self, owner_id: str, period: str) -> float:
        start, end = period_bounds(period)
        return float(self._db.scalar(
            """SELECT SUM(price) FROM agent_calls
               WHERE owner_id = ? AND created_at >= ? AND created_at < ?""",
            (owner_id, start, end), 0.0,
        ))

    def platform_period_total(self, period: str) -> float:
        start, end = period_bounds(period)
        return float(self._db.scalar(
            "SELECT SUM(price) FROM agent_calls WHERE created_at >= ? AND created_at < ?",
            (start, end), 0.0,
        ))

    # --- Row access ---

    def calls_for_report(self, report_id: str) -> list[AgentCall]:
        """Rows of a report in write order."""
        rows = self._db.query(
            "SELECT * FROM agent_calls WHERE report_id = ? ORDER BY rowid", (report_id,)
        )
        return [_row_to_call(r) for r in rows]

    def calls_for_owner(self, owner_id: str, period: str) -> list[AgentCall]:
        start, end = period_bounds(period)
        rows = self._db.query(
            """SELECT * FROM agent_calls
               WHERE owner_id = ? AND created_at >= ? AND created_at < ?
               ORDER BY created_at, rowid""",
            (owner_id, start, end),
        )
        return [_row_to_call(r) for r in rows]

    def entries(self, owner_id: str, period: str) -> list[CostLedgerEntry]:
        return [CostLedgerEntry.from_call(c) for c in self.calls_for_owner(owner_id, period)]

    # --- Analytics ---

    def usage_by_agent(self, owner_id: str, period: str) -> dict[str, AgentUsage]:
        return aggregate_by_agent(self.calls_for_owner(owner_id, period))

    def usage_by_model(self, owner_id: str, period: str) -> dict[str, ModelUsage]:
        return aggregate_by_model(self.calls_for_owner(owner_id, period))

    def daily_costs(self, period: str) -> list[DailyCost]:
        """Platform-wide spend per UTC day of a period."""
        start, end = period_bounds(period)
        rows = self._db.query(
            """SELECT substr(created_at, 1, 10) AS day,
                      SUM(CASE WHEN entry_kind = 'call' THEN 1 ELSE 0 END) AS calls,
                      SUM(tokens_in + tokens_out) AS tokens,
                      SUM(price) AS cost
               FROM agent_calls
               WHERE created_at >= ? AND created_at < ?
               GROUP BY day ORDER BY day""",
            (start, end),
        )
        return [
            DailyCost(date=r["day"], total_calls=r["calls"] or 0,
                      total_tokens=r["tokens"] or 0, cost_usd=r["cost"] or 0.0)
            for r in rows
        ]

    def top_spenders(self, period: str, limit: int = 10) -> list[OwnerSpend]:
        start, end = period_bounds(period)
        rows = self._db.query(
            """SELECT owner_id,
                      SUM(CASE WHEN entry_kind = 'call' THEN 1 ELSE 0 END) AS calls,
                      SUM(price) AS cost
               FROM agent_calls
               WHERE created_at >= ? AND created_at < ?
               GROUP BY owner_id ORDER BY cost DESC, owner_id LIMIT ?""",
            (start, end, limit),
        )
        return [
            OwnerSpend(owner_id=r["owner_id"], total_calls=r["calls"] or 0,
                       cost_usd=r["cost"] or 0.0)
            for r in rows
        ]


def _row_to_call(row) -> AgentCall:
    data = {c: row[c] for c in _COLUMNS}
    data["created_at"] = from_db_time(data["created_at"])
    return AgentCall(**data)

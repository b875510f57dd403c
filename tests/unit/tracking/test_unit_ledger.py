# tests/unit/tracking/test_unit_ledger.py — v1
"""Tests for tracking/ledger.py, tracking/agent_tracker.py and tracking/budget_alerts.py."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest

from galley.core.models import AgentCall
from galley.storage.database import Database
from galley.tracking.agent_tracker import aggregate_by_agent, aggregate_by_model
from galley.tracking.budget_alerts import BudgetAlertMonitor
from galley.tracking.ledger import CostLedger, period_bounds

MARCH = datetime(2026, 3, 10, tzinfo=timezone.utc)
APRIL = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _call(call_id: str, price: float, created_at: datetime = MARCH, **overrides) -> AgentCall:
    values = {
        "id": call_id, "owner_id": "o1", "report_id": "r1", "agent_kind": "copy_edit",
        "model": "claude-sonnet-4-20250514", "price": price, "status": "ok",
        "tokens_in": 100, "tokens_out": 10, "wall_time_ms": 50, "created_at": created_at,
    }
    values.update(overrides)
    return AgentCall(**values)


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def ledger(db):
    return CostLedger(db)


class TestPeriodBounds:
    def test_month(self):
        start, end = period_bounds("2026-03")
        assert start.startswith("2026-03-01T00:00:00")
        assert end.startswith("2026-04-01T00:00:00")

    def test_december_rolls_year(self):
        assert period_bounds("2026-12")[1].startswith("2027-01-01")


class TestCostLedger:
    def test_append_returns_entry(self, ledger):
        entry = ledger.append(_call("c1", 0.5))
        assert entry.call_id == "c1"
        assert entry.period == "2026-03"

    def test_duplicate_id_rejected(self, ledger):
        ledger.append(_call("c1", 0.5))
        with pytest.raises(sqlite3.IntegrityError):
            ledger.append(_call("c1", 0.5))

    def test_totals(self, ledger):
        ledger.append(_call("c1", 0.5))
        ledger.append(_call("c2", 0.25, status="retryable_error"))
        ledger.append(_call("c3", 1.0, report_id="r2"))
        ledger.append(_call("c4", 2.0, created_at=APRIL))
        assert ledger.report_total("r1") == pytest.approx(2.75)
        assert ledger.report_call_count("r1") == 3
        assert ledger.owner_period_total("o1", "2026-03") == pytest.approx(1.75)
        assert ledger.platform_period_total("2026-04") == pytest.approx(2.0)
        assert ledger.report_total("missing") == 0.0

    def test_correction_adjusts_totals_not_call_count(self, ledger):
        ledger.append(_call("c1", 0.5))
        ledger.append_correction("o1", -0.2, MARCH, report_id="r1", note="refund")
        assert ledger.report_total("r1") == pytest.approx(0.3)
        assert ledger.report_call_count("r1") == 1
        rows = ledger.calls_for_report("r1")
        assert [r.entry_kind for r in rows] == ["call", "correction"]
        assert rows[1].note == "refund"

    def test_rows_keep_write_order(self, ledger):
        for i in range(5):
            ledger.append(_call(f"c{4 - i}", 0.1))
        assert [r.id for r in ledger.calls_for_report("r1")] == ["c4", "c3", "c2", "c1", "c0"]

    def test_entries_for_owner_period(self, ledger):
        ledger.append(_call("c1", 0.5))
        ledger.append(_call("c2", 0.5, owner_id="o2"))
        ledger.append(_call("c3", 0.5, created_at=APRIL))
        assert [e.call_id for e in ledger.entries("o1", "2026-03")] == ["c1"]

    def test_daily_costs_and_top_spenders(self, ledger):
        ledger.append(_call("c1", 0.5))
        ledger.append(_call("c2", 1.5, owner_id="o2"))
        ledger.append(_call("c3", 0.5, created_at=datetime(2026, 3, 11, tzinfo=timezone.utc)))
        days = ledger.daily_costs("2026-03")
        assert [(d.date, d.total_calls) for d in days] == [("2026-03-10", 2), ("2026-03-11", 1)]
        assert days[0].cost_usd == pytest.approx(2.0)
        spenders = ledger.top_spenders("2026-03")
        assert [s.owner_id for s in spenders] == ["o2", "o1"]
        assert ledger.top_spenders("2026-03", limit=1)[0].cost_usd == pytest.approx(1.5)


class TestAggregation:
    def test_by_agent(self):
        calls = [
            _call("c1", 0.0, status="retryable_error", wall_time_ms=10),
            _call("c2", 0.5, attempt=2, wall_time_ms=30),
            _call("c3", 0.2, agent_kind="line_edit"),
            _call("c4", -0.1, entry_kind="correction", tokens_in=0, tokens_out=0),
        ]
        usage = aggregate_by_agent(calls)
        copy_edit = usage["copy_edit"]
        assert copy_edit.total_calls == 2
        assert copy_edit.retry_count == 1
        assert copy_edit.failure_count == 1
        assert copy_edit.max_latency_ms == 30
        assert copy_edit.cost_usd == pytest.approx(0.4)
        assert usage["line_edit"].total_tokens == 110

    def test_unattributed(self):
        usage = aggregate_by_agent([_call("c1", 0.1, agent_kind=None)])
        assert list(usage) == ["unattributed"]

    def test_by_model(self):
        usage = aggregate_by_model([_call("c1", 0.1), _call("c2", 0.2, model="other")])
        assert usage["other"].cost_usd == pytest.approx(0.2)
        assert usage["other"].total_calls == 1


class TestBudgetAlerts:
    def test_thresholds_fire_once_per_period(self, db):
        monitor = BudgetAlertMonitor(db, monthly_budget=10.0, thresholds=[90, 50])
        ledger = CostLedger(db, monitor)
        ledger.append(_call("c1", 6.0))
        assert [a.threshold for a in monitor.alerts("2026-03")] == [50.0]
        ledger.append(_call("c2", 0.5))
        assert len(monitor.alerts("2026-03")) == 1
        ledger.append(_call("c3", 4.0))
        alerts = monitor.alerts("2026-03")
        assert [a.threshold for a in alerts] == [50.0, 90.0]
        assert not alerts[1].critical

    def test_check_returns_newly_fired(self, db):
        monitor = BudgetAlertMonitor(db, monthly_budget=1.0, thresholds=[100])
        CostLedger(db).append(_call("c1", 2.0))
        fired = monitor.check(MARCH)
        assert [a.critical for a in fired] == [True]
        assert monitor.check(MARCH) == []

    def test_disabled_without_budget(self, db):
        monitor = BudgetAlertMonitor(db, monthly_budget=0.0, thresholds=[50])
        CostLedger(db).append(_call("c1", 2.0))
        assert monitor.check(MARCH) == []

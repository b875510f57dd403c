# tests/unit/storage/test_unit_quotas.py — v1
"""Tests for storage/quotas.py."""

from __future__ import annotations


class TestQuotaRepository:
    def test_default_plan(self, services):
        assert services.quotas.plan_for("o1") == "free"
        assert services.quotas.quota("o1").max_running_reports == 5

    def test_set_plan(self, services):
        services.quotas.set_plan("o1", "pro")
        services.quotas.set_plan("o1", "enterprise")
        assert services.quotas.plan_for("o1") == "enterprise"
        assert services.quotas.quota("o1").max_monthly_cost == 500.0

    def test_consume_is_bounded(self, services):
        results = [services.quotas.try_consume_report("o1", "2026-03", 2) for _ in range(3)]
        assert results == [True, True, False]
        assert services.quotas.reports_admitted("o1", "2026-03") == 2
        assert services.quotas.reports_admitted("o1", "2026-04") == 0

    def test_release(self, services):
        services.quotas.try_consume_report("o1", "2026-03", 1)
        services.quotas.release_report("o1", "2026-03")
        services.quotas.release_report("o1", "2026-03")
        assert services.quotas.reports_admitted("o1", "2026-03") == 0
        assert services.quotas.try_consume_report("o1", "2026-03", 1)

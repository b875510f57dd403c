# tests/unit/llm/test_unit_gateway.py — v2
"""Tests for llm/gateway.py: retries, timeouts, cancellation and ledger rows."""

from __future__ import annotations

import asyncio
import time

import pytest

from galley.core.cancellation import CancellationToken
from galley.llm.models import CallMetadata, Message, ProviderError
from galley.tracking.cost_calculator import compute_price

MODEL = "claude-sonnet-4-20250514"
MESSAGES = [Message(role="system", content="sys"), Message(role="user", content="needle")]


def _meta(**overrides) -> CallMetadata:
    values = {"owner_id": "o1", "report_id": "r1", "agent_kind": "copy_edit"}
    values.update(overrides)
    return CallMetadata(**values)


async def _invoke(services, **kwargs):
    return await services.gateway.invoke(
        MODEL, MESSAGES, max_output=512, temperature=0.2, metadata=_meta(), **kwargs
    )


class TestGatewaySuccess:
    @pytest.mark.asyncio
    async def test_single_ok_row_priced_from_tokens(self, services):
        outcome = await _invoke(services)
        assert outcome.ok
        assert outcome.attempts == 1
        assert outcome.text == '{"echo": true}'

        rows = services.ledger.calls_for_report("r1")
        assert [r.status for r in rows] == ["ok"]
        assert rows[0].price == pytest.approx(compute_price(MODEL, 1000, 200))
        assert rows[0].tokens_in == 1000 and rows[0].tokens_out == 200
        assert outcome.call_ids == [rows[0].id]

    @pytest.mark.asyncio
    async def test_metadata_is_carried_on_row(self, services):
        await services.gateway.invoke(
            MODEL, MESSAGES, 512, 0.2,
            _meta(manuscript_id="m1", prompt_version="v1", chunk_ordinal=2, input_hash="h"),
        )
        row = services.ledger.calls_for_report("r1")[0]
        assert (row.manuscript_id, row.prompt_version, row.chunk_ordinal, row.input_hash) == (
            "m1", "v1", 2, "h",
        )
        assert row.owner_id == "o1"
        assert row.agent_kind == "copy_edit"


class TestGatewayRetries:
    @pytest.mark.asyncio
    async def test_retryable_then_success(self, services, llm):
        llm.script("needle", *[ProviderError("rate_limited")] * 3)
        outcome = await _invoke(services)
        assert outcome.ok
        assert outcome.attempts == 4
        rows = services.ledger.calls_for_report("r1")
        assert [r.status for r in rows] == ["retryable_error"] * 3 + ["ok"]
        assert [r.attempt for r in rows] == [1, 2, 3, 4]
        assert all(r.price == 0 for r in rows[:3])

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, services, llm):
        llm.script("needle", *[ProviderError("server_error")] * 10)
        outcome = await _invoke(services)
        assert not outcome.ok
        assert outcome.failure.kind == "server_error"
        assert services.ledger.report_call_count("r1") == 5

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, services, llm):
        llm.script("needle", ProviderError("client_error", "bad request", status_code=400))
        outcome = await _invoke(services)
        assert outcome.failure.kind == "client_error"
        rows = services.ledger.calls_for_report("r1")
        assert [(r.status, r.failure_kind) for r in rows] == [("permanent_error", "client_error")]

    @pytest.mark.asyncio
    async def test_os_error_is_transport(self, services, llm):
        def boom(_messages):
            raise ConnectionResetError("reset")

        llm.script("needle", boom)
        outcome = await _invoke(services)
        assert outcome.ok
        assert services.ledger.calls_for_report("r1")[0].failure_kind == "transport"

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_transport(self, make_services, llm, hang):
        services = make_services(gateway_attempt_timeout_s=0.05)
        llm.script("needle", hang)
        outcome = await _invoke(services)
        assert outcome.ok
        rows = services.ledger.calls_for_report("r1")
        assert [r.failure_kind for r in rows] == ["transport", None]

    @pytest.mark.asyncio
    async def test_call_budget_stops_retries(self, make_services, llm):
        services = make_services(
            gateway_call_budget_s=1.0, gateway_backoff_base_s=5.0, gateway_backoff_cap_s=10.0
        )
        llm.script("needle", *[ProviderError("rate_limited")] * 5)
        outcome = await _invoke(services)
        assert outcome.failure.kind == "rate_limited"
        assert services.ledger.report_call_count("r1") == 1

    @pytest.mark.asyncio
    async def test_advertised_retry_after_replaces_backoff(self, make_services, llm):
        services = make_services(gateway_backoff_base_s=5.0, gateway_backoff_cap_s=10.0)
        llm.script("needle", ProviderError("rate_limited", "slow down", retry_after=0.01))
        started = time.monotonic()
        outcome = await _invoke(services)
        assert outcome.ok
        assert time.monotonic() - started < 2.0
        rows = services.ledger.calls_for_report("r1")
        assert [(r.status, r.failure_kind) for r in rows] == [
            ("retryable_error", "rate_limited"), ("ok", None),
        ]

    @pytest.mark.asyncio
    async def test_retry_after_beyond_call_budget_stops(self, make_services, llm):
        services = make_services(gateway_call_budget_s=1.0)
        llm.script("needle", ProviderError("rate_limited", "slow down", retry_after=60.0))
        started = time.monotonic()
        outcome = await _invoke(services)
        assert outcome.failure.kind == "rate_limited"
        assert outcome.attempts == 1
        assert time.monotonic() - started < 1.0
        assert services.ledger.report_call_count("r1") == 1


class TestGatewayParsing:
    @pytest.mark.asyncio
    async def test_empty_response_is_priced_from_billed_usage(self, services, llm):
        llm.script("needle", ProviderError(
            "parse_unavailable", "Response contained no text", input_tokens=1000, output_tokens=0,
        ))
        outcome = await _invoke(services)
        assert outcome.failure.kind == "parse_unavailable"
        (row,) = services.ledger.calls_for_report("r1")
        assert (row.status, row.tokens_in, row.tokens_out) == ("permanent_error", 1000, 0)
        assert row.price == pytest.approx(compute_price(MODEL, 1000, 0))
        assert row.price > 0
        assert outcome.price == pytest.approx(row.price)
        assert services.ledger.report_total("r1") == pytest.approx(row.price)

    @pytest.mark.asyncio
    async def test_parse_error_is_recorded_and_not_retried(self, services):
        outcome = await _invoke(services, validate=lambda text: (None, "no schema"))
        assert outcome.failure.kind == "parse_error"
        assert outcome.text == '{"echo": true}'
        rows = services.ledger.calls_for_report("r1")
        assert [r.status for r in rows] == ["parse_error"]
        assert rows[0].price > 0

    @pytest.mark.asyncio
    async def test_parsed_payload_returned(self, services):
        outcome = await _invoke(services, validate=lambda text: ({"echo": True}, None))
        assert outcome.ok
        assert outcome.parsed == {"echo": True}


class TestGatewayCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self, services):
        token = CancellationToken()
        token.cancel("cancelled")
        outcome = await _invoke(services, cancel=token)
        assert outcome.failure.kind == "cancelled"
        assert outcome.attempts == 0
        assert services.ledger.calls_for_report("r1") == []

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, make_services, llm):
        services = make_services(gateway_backoff_base_s=5.0, gateway_backoff_cap_s=10.0)
        llm.script("needle", ProviderError("rate_limited"))
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "supervisor_timeout")
        outcome = await _invoke(services, cancel=token)
        assert outcome.failure.kind == "cancelled"
        assert outcome.failure.message == "supervisor_timeout"
        assert services.ledger.report_call_count("r1") == 1

    @pytest.mark.asyncio
    async def test_cancel_during_attempt_records_row(self, services, llm, hang):
        llm.script("needle", hang)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        outcome = await _invoke(services, cancel=token)
        assert outcome.failure.kind == "cancelled"
        rows = services.ledger.calls_for_report("r1")
        assert [r.failure_kind for r in rows] == ["cancelled"]
        assert rows[0].price == 0

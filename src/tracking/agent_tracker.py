# src/tracking/agent_tracker.py — v2
"""Per-agent and per-model aggregation of ledger AgentCall rows."""

from __future__ import annotations

from collections import defaultdict

from galley.core.models import AgentCall
from galley.tracking.models import AgentUsage, ModelUsage


def aggregate_by_agent(calls: list[AgentCall]) -> dict[str, AgentUsage]:
    """Aggregate ledger rows into per-agent usage.

    Correction entries count towards cost but not towards calls or latency.
    Rows without an agent kind are grouped under ``"unattributed"``.
    """
    grouped: dict[str, list[AgentCall]] = defaultdict(list)
    for call in calls:
        grouped[call.agent_kind or "unattributed"].append(call)

    result: dict[str, AgentUsage] = {}
    for agent_name, agent_calls in grouped.items():
        attempts = [c for c in agent_calls if c.entry_kind == "call"]
        total_calls = len(attempts)
        total_input = sum(c.tokens_in for c in attempts)
        total_output = sum(c.tokens_out for c in attempts)
        latencies = [c.wall_time_ms for c in attempts]

        result[agent_name] = AgentUsage(
            agent=agent_name,
            total_calls=total_calls,
            total_input_tokens=total_input,
            total_output_tokens=total_output,
            total_tokens=total_input + total_output,
            avg_latency_ms=sum(latencies) / total_calls if total_calls else 0.0,
            max_latency_ms=max(latencies) if latencies else 0,
            retry_count=sum(1 for c in attempts if c.attempt > 1),
            failure_count=sum(1 for c in attempts if c.status != "ok"),
            cost_usd=sum(c.price for c in agent_calls),
        )
    return result


def aggregate_by_model(calls: list[AgentCall]) -> dict[str, ModelUsage]:
    grouped: dict[str, list[AgentCall]] = defaultdict(list)
    for call in calls:
        grouped[call.model].append(call)

    return {
        model: ModelUsage(
            model=model,
            total_calls=sum(1 for c in model_calls if c.entry_kind == "call"),
            total_input_tokens=sum(c.tokens_in for c in model_calls),
            total_output_tokens=sum(c.tokens_out for c in model_calls),
            cost_usd=sum(c.price for c in model_calls),
        )
        for model, model_calls in grouped.items()
    }

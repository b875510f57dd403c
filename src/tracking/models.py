# src/tracking/models.py — v2
"""Tracking read models: per-agent, per-model and daily usage rollups."""

from __future__ import annotations

from pydantic import BaseModel


class AgentUsage(BaseModel):
    """Per-agent aggregated ledger usage."""

    agent: str
    total_calls: int
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
    avg_latency_ms: float
    max_latency_ms: int
    retry_count: int = 0
    failure_count: int = 0
    cost_usd: float = 0.0


class ModelUsage(BaseModel):
    """Per-LLM-model aggregated ledger usage."""

    model: str
    total_calls: int
    total_input_tokens: int
    total_output_tokens: int
    cost_usd: float


class DailyCost(BaseModel):
    """Daily spend entry for cost trend tracking."""

    date: str
    total_calls: int
    total_tokens: int
    cost_usd: float


class OwnerSpend(BaseModel):
    owner_id: str
    total_calls: int
    cost_usd: float


class BudgetAlert(BaseModel):
    """Platform spend crossed a configured share of the monthly budget."""

    period: str
    threshold: float
    spend: float
    budget: float

    @property
    def critical(self) -> bool:
        return self.threshold >= 100.0


class CostEstimate(BaseModel):
    """Pre-admission estimate of what a pipeline will cost on a manuscript."""

    pipeline_spec_id: str
    word_count: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    per_agent: dict[str, float]

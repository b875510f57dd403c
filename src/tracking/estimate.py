# src/tracking/estimate.py — v1
"""Pre-admission analysis cost estimate.

Upper-bound style: every call is assumed to use its full output
allowance. Retries and repairs are not included.
"""

from __future__ import annotations

import math

from galley.core.models import PipelineSpec
from galley.prompts.library import PromptLibrary
from galley.tracking.cost_calculator import (
    ModelPricing,
    compute_price,
    estimate_tokens_from_words,
)
from galley.tracking.models import CostEstimate

# Rendered instructions, headers and prior-agent payloads per call.
_PROMPT_OVERHEAD_TOKENS = 500


def estimate_analysis_cost(
    word_count: int,
    pipeline: PipelineSpec,
    prompts: PromptLibrary,
    default_model: str,
    pricing: dict[str, ModelPricing] | None = None,
) -> CostEstimate:
    """Estimate the cost of running ``pipeline`` on a manuscript of ``word_count`` words."""
    manuscript_tokens = estimate_tokens_from_words(word_count)
    total_in = total_out = 0
    per_agent: dict[str, float] = {}

    for agent in pipeline.agents:
        template = prompts.resolve(agent.kind, agent.prompt_version)
        policy = agent.chunking
        if policy.mode == "whole":
            calls, input_tokens = 1, manuscript_tokens
        elif policy.chunked:
            calls = max(1, math.ceil(manuscript_tokens / policy.max_tokens_per_chunk))
            input_tokens = manuscript_tokens
        else:
            calls = 1
            input_tokens = min(manuscript_tokens, template.expected_input_tokens)

        tokens_in = input_tokens + calls * _PROMPT_OVERHEAD_TOKENS
        tokens_out = calls * template.max_output_tokens
        per_agent[agent.kind] = compute_price(
            template.model or default_model, tokens_in, tokens_out, pricing
        )
        total_in += tokens_in
        total_out += tokens_out

    return CostEstimate(
        pipeline_spec_id=pipeline.id,
        word_count=word_count,
        input_tokens=total_in,
        output_tokens=total_out,
        cost_usd=sum(per_agent.values()),
        per_agent=per_agent,
    )

# src/config/pipelines.py — v1
"""Declarative pipeline registry.

Process-wide, read-only at runtime; changes require a restart. Each spec
is a DAG of agents: ``requires`` edges are hard dependencies (a failed
dependency skips the agent), ``uses`` edges are optional inputs that are
elided when missing.
"""

from __future__ import annotations

from galley.core.models import ChunkingPolicy, PipelineAgent, PipelineSpec

FULL_ANALYSIS = PipelineSpec(
    id="full_analysis_v1",
    description="Editorial passes, market positioning and marketing assets.",
    agents=[
        PipelineAgent(
            kind="developmental_edit",
            chunking=ChunkingPolicy(mode="chapter", max_tokens_per_chunk=24_000),
        ),
        PipelineAgent(kind="line_edit", chunking=ChunkingPolicy(excerpt_chars=24_000)),
        PipelineAgent(kind="copy_edit", chunking=ChunkingPolicy(excerpt_chars=24_000)),
        PipelineAgent(kind="market_analysis"),
        PipelineAgent(kind="comp_titles", uses=["market_analysis"]),
        PipelineAgent(kind="marketing_hooks", requires=["market_analysis"], required=False),
        PipelineAgent(kind="cover_brief", uses=["market_analysis"], required=False),
        PipelineAgent(kind="back_matter", required=False),
        PipelineAgent(kind="author_bio", required=False),
        PipelineAgent(
            kind="positioning_report",
            requires=["comp_titles", "market_analysis"],
        ),
    ],
)

EDITORIAL = PipelineSpec(
    id="editorial_v1",
    description="Developmental, line and copy edits.",
    agents=[
        PipelineAgent(
            kind="developmental_edit",
            chunking=ChunkingPolicy(mode="chapter", max_tokens_per_chunk=24_000),
        ),
        PipelineAgent(
            kind="line_edit",
            chunking=ChunkingPolicy(mode="paragraph", max_tokens_per_chunk=6_000),
        ),
        PipelineAgent(
            kind="copy_edit",
            chunking=ChunkingPolicy(mode="paragraph", max_tokens_per_chunk=6_000),
        ),
    ],
)

MARKETING = PipelineSpec(
    id="marketing_v1",
    description="Market analysis with dependent marketing copy.",
    agents=[
        PipelineAgent(kind="market_analysis"),
        PipelineAgent(kind="comp_titles", uses=["market_analysis"]),
        PipelineAgent(kind="marketing_hooks", requires=["market_analysis"]),
        PipelineAgent(kind="back_matter", required=False),
        PipelineAgent(kind="positioning_report", requires=["comp_titles", "market_analysis"]),
    ],
)

DEFAULT_PIPELINES: tuple[PipelineSpec, ...] = (FULL_ANALYSIS, EDITORIAL, MARKETING)


def default_pipelines() -> dict[str, PipelineSpec]:
    """Fresh id -> spec mapping of the built-in pipelines."""
    return {spec.id: spec.model_copy(deep=True) for spec in DEFAULT_PIPELINES}

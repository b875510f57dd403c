# tests/unit/pipeline/test_unit_dag_builder.py — v2
"""Tests for pipeline/dag_builder.py."""

from __future__ import annotations

import pytest

from galley.config.pipelines import default_pipelines
from galley.core.errors import InvalidPipelineError
from galley.core.models import ChunkingPolicy, PipelineAgent, PipelineSpec
from galley.pipeline.dag_builder import build_plan
from galley.prompts.templates import default_library


def _spec(*agents: PipelineAgent) -> PipelineSpec:
    return PipelineSpec(id="test", agents=list(agents))


class TestBuildPlan:
    def test_full_analysis_order(self):
        plan = build_plan(default_pipelines()["full_analysis_v1"], default_library())
        order = plan.flat_order
        assert order.index("market_analysis") < order.index("comp_titles")
        assert order.index("market_analysis") < order.index("marketing_hooks")
        assert order.index("comp_titles") < order.index("positioning_report")
        assert "market_analysis" in plan.stages[0]
        assert plan.stages[-1] == ["positioning_report"]

    def test_independent_agents_share_a_stage(self):
        plan = build_plan(_spec(PipelineAgent(kind="copy_edit"), PipelineAgent(kind="line_edit")))
        assert plan.stages == [["copy_edit", "line_edit"]]

    def test_absent_optional_input_is_dropped(self):
        plan = build_plan(_spec(PipelineAgent(kind="comp_titles", uses=["market_analysis"])))
        assert plan.uses["comp_titles"] == []
        assert plan.dependencies("comp_titles") == []

    def test_dependencies_combine_requires_and_uses(self):
        plan = build_plan(default_pipelines()["full_analysis_v1"])
        assert set(plan.dependencies("positioning_report")) == {"comp_titles", "market_analysis"}


class TestInvalidPipelines:
    def test_empty(self):
        with pytest.raises(InvalidPipelineError, match="no agents"):
            build_plan(_spec())

    def test_duplicate(self):
        with pytest.raises(InvalidPipelineError, match="twice"):
            build_plan(_spec(PipelineAgent(kind="copy_edit"), PipelineAgent(kind="copy_edit")))

    def test_missing_required_dependency(self):
        with pytest.raises(InvalidPipelineError, match="requires"):
            build_plan(_spec(PipelineAgent(kind="marketing_hooks", requires=["market_analysis"])))

    def test_cycle(self):
        spec = _spec(
            PipelineAgent(kind="market_analysis", uses=["comp_titles"]),
            PipelineAgent(kind="comp_titles", requires=["market_analysis"]),
        )
        with pytest.raises(InvalidPipelineError, match="Cycle"):
            build_plan(spec)

    def test_template_may_read_undeclared_agent_slot(self):
        spec = _spec(PipelineAgent(kind="comp_titles"), PipelineAgent(kind="cover_brief"))
        plan = build_plan(spec, default_library())
        assert plan.stages == [["comp_titles", "cover_brief"]]

    def test_whole_chunking_needs_summarizing_template(self):
        spec = _spec(PipelineAgent(kind="copy_edit", chunking=ChunkingPolicy(mode="whole")))
        with pytest.raises(InvalidPipelineError, match="cannot summarize"):
            build_plan(spec, default_library())

    def test_whole_chunking_allowed_for_developmental_edit(self):
        spec = _spec(PipelineAgent(kind="developmental_edit", chunking=ChunkingPolicy(mode="whole")))
        assert build_plan(spec, default_library()).flat_order == ["developmental_edit"]

    def test_unknown_template_version(self):
        spec = _spec(PipelineAgent(kind="copy_edit", prompt_version="v9"))
        with pytest.raises(InvalidPipelineError):
            build_plan(spec, default_library())

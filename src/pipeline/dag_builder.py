# src/pipeline/dag_builder.py — v3
"""DAG builder: validate a PipelineSpec and derive its execution plan.

Edges run dependency -> dependent for both ``requires`` and ``uses``.
Optional (``uses``) inputs naming an agent absent from the spec are
dropped. Validation also checks the prompt templates: each must resolve,
and ``whole`` chunking is only allowed for templates that can summarize.
Template slots named after an undeclared agent are bound empty at run time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import networkx as nx

from galley.core.errors import InvalidPipelineError, UnknownTemplateError
from galley.core.models import PipelineSpec
from galley.prompts.library import PromptLibrary

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Validated pipeline.

    stages is a list of "levels": agents within the same level have no
    mutual dependencies. The orchestrator launches agents as soon as their
    own dependencies finish, so levels are informational.
    """

    spec: PipelineSpec
    stages: list[list[str]] = field(default_factory=list)
    requires: dict[str, list[str]] = field(default_factory=dict)
    uses: dict[str, list[str]] = field(default_factory=dict)

    @property
    def flat_order(self) -> list[str]:
        return [agent for stage in self.stages for agent in stage]

    def dependencies(self, kind: str) -> list[str]:
        return [*self.requires.get(kind, []), *self.uses.get(kind, [])]


def build_plan(spec: PipelineSpec, prompts: PromptLibrary | None = None) -> ExecutionPlan:
    """Validate a spec and build its staged plan.

    Raises:
        InvalidPipelineError: Empty spec, duplicate agents, unknown required
            dependency, cycle, or template/chunking mismatch.
    """
    if not spec.agents:
        raise InvalidPipelineError(f"Pipeline {spec.id!r} has no agents")

    kinds = spec.kinds
    duplicates = sorted({k for k in kinds if kinds.count(k) > 1})
    if duplicates:
        raise InvalidPipelineError(f"Pipeline {spec.id!r} lists agents twice: {duplicates}")

    present = set(kinds)
    graph = nx.DiGraph()
    graph.add_nodes_from(kinds)
    requires: dict[str, list[str]] = {}
    uses: dict[str, list[str]] = {}

    for agent in spec.agents:
        for dep in agent.requires:
            if dep not in present:
                raise InvalidPipelineError(
                    f"Agent {agent.kind!r} requires {dep!r} which is not in pipeline {spec.id!r}"
                )
        requires[agent.kind] = list(agent.requires)
        uses[agent.kind] = [dep for dep in agent.uses if dep in present]
        for dep in requires[agent.kind] + uses[agent.kind]:
            graph.add_edge(dep, agent.kind)

    if not nx.is_directed_acyclic_graph(graph):
        cycle = [edge[0] for edge in nx.find_cycle(graph)]
        raise InvalidPipelineError(f"Cycle detected in pipeline {spec.id!r}: {cycle}")

    if prompts is not None:
        _check_templates(spec, prompts)

    stages = [sorted(generation) for generation in nx.topological_generations(graph)]
    plan = ExecutionPlan(spec=spec, stages=stages, requires=requires, uses=uses)
    logger.debug(
        "DAG built for %s: %d agents in %d stages -> %s",
        spec.id, len(kinds), len(stages), plan.flat_order,
    )
    return plan


def _check_templates(spec: PipelineSpec, prompts: PromptLibrary) -> None:
    for agent in spec.agents:
        try:
            template = prompts.resolve(agent.kind, agent.prompt_version)
        except UnknownTemplateError as e:
            raise InvalidPipelineError(str(e)) from e

        if agent.chunking.mode == "whole" and not template.can_summarize:
            raise InvalidPipelineError(
                f"Agent {agent.kind!r} uses whole-manuscript chunking but its template "
                "cannot summarize"
            )

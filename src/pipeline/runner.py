# src/pipeline/runner.py — v3
"""Agent runner — execute one agent end to end for one report.

Steps: resolve the prompt template, assemble slot values (manuscript
metadata, excerpt or chunk text, prior agent payloads), call the gateway
once per segment under the report's concurrency bound, parse, optionally
run a single repair call, and reduce chunk outputs in ordinal order.

The runner never raises: every failure becomes an AgentResult with a
typed error descriptor.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from galley.chunking.base_chunker import estimate_tokens
from galley.chunking.chapter_chunker import describe_structure
from galley.chunking.chunk_validator import validate_chunks
from galley.chunking.chunker_factory import chunk
from galley.core.errors import (
    ErrorDescriptor,
    TemplateSlotMissingError,
    UnknownTemplateError,
)
from galley.core.models import AGENT_KINDS, AgentResult, Chunk, PipelineAgent
from galley.llm.models import CallMetadata, CallOutcome, Message
from galley.logging.context import set_agent_context, set_step
from galley.parsing.structured_output import make_validator, repair_prompt
from galley.pipeline.context import RunContext, ServiceContext
from galley.prompts.library import PromptTemplate, render
from galley.tracking.cost_calculator import compute_price

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """Input unit of one gateway invocation: an excerpt or one chunk."""

    number: int
    count: int
    text: str
    chunk: Chunk | None = None


@dataclass
class SegmentOutcome:
    number: int
    payload: Any = None
    error: ErrorDescriptor | None = None
    cost: float = 0.0
    call_ids: list[str] = field(default_factory=list)
    blocked: bool = False
    deduplicated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def input_hash(agent_kind: str, version: str, slots: dict[str, Any]) -> str:
    """Digest over (agent, template version, values of the slots the template reads)."""
    raw = json.dumps(
        {"agent": agent_kind, "version": version, "slots": slots},
        sort_keys=True, ensure_ascii=False, default=str,
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class AgentRunner:
    """Run single agents against the services of a ServiceContext."""

    def __init__(self, services: ServiceContext) -> None:
        self._services = services
        self._settings = services.settings

    async def run(self, agent_kind: str, manuscript_id: str, run: RunContext) -> AgentResult:
        """Execute one agent; never raises."""
        started = time.monotonic()
        set_agent_context(agent_kind)
        try:
            result = await self._run(agent_kind, manuscript_id, run)
        except Exception as e:
            logger.exception("Agent %s crashed", agent_kind)
            result = self._result(
                agent_kind, manuscript_id, "failed",
                error=ErrorDescriptor(kind="internal", message=str(e), agent_kind=agent_kind),
            )
        finally:
            set_agent_context(None)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Agent %s finished: status=%s cost=%.6f calls=%d chunks=%d",
            agent_kind, result.status, result.cost, len(result.call_ids), result.chunk_count,
        )
        return result

    async def _run(self, agent_kind: str, manuscript_id: str, run: RunContext) -> AgentResult:
        if run.token.cancelled:
            return self._result(agent_kind, manuscript_id, "skipped",
                                error=self._error("cancelled", agent_kind, run.token.reason))

        agent = run.plan.spec.agent(agent_kind)
        try:
            template = self._services.prompts.resolve(agent_kind, agent.prompt_version)
        except UnknownTemplateError as e:
            return self._result(agent_kind, manuscript_id, "failed",
                                error=e.descriptor(agent_kind))

        base_slots = self._base_slots(agent, template, run)
        segments = self._segments(agent, template, run)
        outcomes = await asyncio.gather(
            *(self._run_segment(agent, template, base_slots, seg, run) for seg in segments)
        )
        outcomes = sorted(outcomes, key=lambda o: o.number)
        return self._reduce(agent, template, segments, outcomes, manuscript_id, run)

    # --- Input assembly ---

    def _base_slots(
        self, agent: PipelineAgent, template: PromptTemplate, run: RunContext
    ) -> dict[str, Any]:
        manuscript = run.manuscript
        slots: dict[str, Any] = {
            "title": manuscript.title,
            "genre": manuscript.genre,
            "word_count": manuscript.word_count,
        }
        for dep in agent.inputs:
            prior = run.results.get(dep)
            # Missing or unsuccessful optional inputs are elided
            slots[dep] = prior.payload if prior is not None and prior.succeeded else None
        for name in template.slots:
            if name in AGENT_KINDS:
                slots.setdefault(name, None)
        return slots

    def _segments(
        self, agent: PipelineAgent, template: PromptTemplate, run: RunContext
    ) -> list[Segment]:
        policy = agent.chunking
        if not policy.chunked:
            limit = policy.excerpt_chars or template.expected_input_tokens * 4
            return [Segment(number=1, count=1, text=run.text[:limit])]

        chunks = chunk(
            run.text, policy.max_tokens_per_chunk, policy.mode,
            manuscript_id=run.manuscript.id,
        )
        check = validate_chunks(run.text, chunks, policy.max_tokens_per_chunk)
        for warning in check.warnings:
            logger.debug("%s: %s", agent.kind, warning)
        if not check.valid and policy.mode != "paragraph":
            logger.warning(
                "%s chunking of %s broke coverage (%s); falling back to paragraph",
                policy.mode, agent.kind, "; ".join(check.errors),
            )
            chunks = chunk(
                run.text, policy.max_tokens_per_chunk, "paragraph",
                manuscript_id=run.manuscript.id,
            )
        if not chunks:
            return [Segment(number=1, count=1, text="")]
        return [
            Segment(number=c.ordinal + 1, count=len(chunks), text=c.content, chunk=c)
            for c in chunks
        ]

    # --- Per-segment execution ---

    async def _run_segment(
        self,
        agent: PipelineAgent,
        template: PromptTemplate,
        base_slots: dict[str, Any],
        segment: Segment,
        run: RunContext,
    ) -> SegmentOutcome:
        slots = {
            **base_slots,
            "manuscript_text": segment.text,
            "chunk_number": segment.number,
            "chunk_count": segment.count,
        }
        try:
            prompt = render(template, slots)
        except TemplateSlotMissingError as e:
            return SegmentOutcome(number=segment.number, error=e.descriptor(agent.kind))

        digest = input_hash(
            agent.kind, template.version, {name: slots.get(name) for name in template.slots}
        )
        if not run.cache_enabled:
            return await self._call_segment(agent, template, prompt, digest, segment, run)

        cached = run.cache.get(digest)
        if cached is not None:
            logger.debug("Segment %d of %s served from run cache", segment.number, agent.kind)
            shared: SegmentOutcome = await asyncio.shield(cached)
            return SegmentOutcome(
                number=segment.number, payload=shared.payload, error=shared.error,
                blocked=shared.blocked, deduplicated=True,
            )

        future: asyncio.Future[SegmentOutcome] = asyncio.get_running_loop().create_future()
        run.cache[digest] = future
        try:
            outcome = await self._call_segment(agent, template, prompt, digest, segment, run)
        except BaseException as e:
            run.cache.pop(digest, None)
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(e)
                future.exception()  # mark retrieved
            raise
        future.set_result(outcome)
        return outcome

    async def _call_segment(
        self,
        agent: PipelineAgent,
        template: PromptTemplate,
        prompt: str,
        digest: str,
        segment: Segment,
        run: RunContext,
    ) -> SegmentOutcome:
        chunked = segment.chunk is not None
        step = f"chunk_{segment.number:03d}" if chunked else None
        set_step(step)
        metadata = CallMetadata(
            owner_id=run.owner_id,
            manuscript_id=run.manuscript.id,
            report_id=run.report_id,
            agent_kind=agent.kind,
            prompt_version=template.version,
            chunk_ordinal=segment.chunk.ordinal if chunked else None,
            input_hash=digest,
        )
        messages = [
            Message(role="system", content=template.system),
            Message(role="user", content=f"{prompt}\n\n{template.output_schema.instruction()}"),
        ]
        result = SegmentOutcome(number=segment.number)

        outcome = await self._invoke(template, messages, template.temperature, metadata, run)
        if outcome is None:
            result.blocked = True
            result.error = self._error("budget_exhausted", agent.kind, chunk=segment.number)
            return result
        result.cost += outcome.price
        result.call_ids += outcome.call_ids

        if (
            outcome.failure is not None
            and outcome.failure.kind == "parse_error"
            and self._settings.repair_enabled
        ):
            set_step(f"{step}.repair" if step else "repair")
            logger.info("Requesting repair for %s segment %d", agent.kind, segment.number)
            repair_messages = [
                *messages,
                Message(role="assistant", content=outcome.text or "(empty)"),
                Message(
                    role="user",
                    content=repair_prompt(template.output_schema, outcome.failure.message),
                ),
            ]
            repaired = await self._invoke(template, repair_messages, 0.0, metadata, run)
            if repaired is not None:
                result.cost += repaired.price
                result.call_ids += repaired.call_ids
                outcome = repaired
        set_step(None)

        if outcome.failure is not None:
            result.error = self._error(
                outcome.failure.kind, agent.kind, outcome.failure.message, chunk=segment.number
            )
        else:
            result.payload = outcome.parsed
        return result

    async def _invoke(
        self,
        template: PromptTemplate,
        messages: list[Message],
        temperature: float,
        metadata: CallMetadata,
        run: RunContext,
    ) -> CallOutcome | None:
        """One gateway invocation behind the budget check and semaphore F.

        Returns None when the budget guard blocks the call.
        """
        model = template.model or self._settings.llm_default_model
        async with run.semaphore:
            estimate = compute_price(
                model,
                sum(estimate_tokens(m.content) for m in messages),
                template.max_output_tokens,
            )
            reservation = await run.budget.reserve(estimate)
            if reservation is None:
                return None
            try:
                return await self._services.gateway.invoke(
                    model,
                    messages,
                    template.max_output_tokens,
                    temperature,
                    metadata,
                    cancel=run.token,
                    validate=make_validator(template.output_schema),
                )
            finally:
                await run.budget.release(reservation)

    # --- Reduction ---

    def _reduce(
        self,
        agent: PipelineAgent,
        template: PromptTemplate,
        segments: list[Segment],
        outcomes: list[SegmentOutcome],
        manuscript_id: str,
        run: RunContext,
    ) -> AgentResult:
        cost = sum(o.cost for o in outcomes)
        call_ids = [cid for o in outcomes for cid in o.call_ids]
        succeeded = [o for o in outcomes if o.ok]
        failed = [o for o in outcomes if not o.ok]
        common = dict(
            cost=cost, call_ids=call_ids, prompt_version=template.version,
            chunk_count=len(segments) if agent.chunking.chunked else 0,
        )

        if not succeeded:
            first = failed[0].error
            assert first is not None
            if all(o.blocked for o in failed):
                return self._result(agent.kind, manuscript_id, "skipped", error=first, **common)
            if first.kind == "cancelled" or run.token.cancelled:
                status = "failed" if call_ids else "skipped"
                return self._result(
                    agent.kind, manuscript_id, status,
                    error=self._error("cancelled", agent.kind, run.token.reason), **common,
                )
            return self._result(agent.kind, manuscript_id, "failed", error=first, **common)

        if agent.chunking.chunked:
            by_number = {s.number: s for s in segments}
            payload: Any = {
                "chunks": [
                    {
                        "ordinal": by_number[o.number].chunk.ordinal
                        if by_number[o.number].chunk else o.number - 1,
                        "heading": by_number[o.number].chunk.heading
                        if by_number[o.number].chunk else None,
                        "output": o.payload,
                    }
                    for o in succeeded
                ],
                "chunk_count": len(segments),
                "failed_chunks": [o.number - 1 for o in failed],
                "structure": describe_structure(run.text).model_dump(),
            }
        else:
            payload = succeeded[0].payload

        if failed:
            error = failed[0].error
            error = error.model_copy(update={
                "details": {**error.details, "failed_chunks": [o.number - 1 for o in failed]},
            }) if error else None
            return self._result(agent.kind, manuscript_id, "partial",
                                payload=payload, error=error, **common)
        return self._result(agent.kind, manuscript_id, "complete", payload=payload, **common)

    @staticmethod
    def _error(kind: str, agent_kind: str, message: str | None = None, **details: Any
               ) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=kind, message=message or kind, agent_kind=agent_kind, details=details
        )

    @staticmethod
    def _result(agent_kind: str, manuscript_id: str, status: str, **fields: Any) -> AgentResult:
        return AgentResult(
            agent_kind=agent_kind, manuscript_id=manuscript_id, status=status, **fields
        )

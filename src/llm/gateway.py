# src/llm/gateway.py — v2
"""LLM gateway: the single choke-point for provider calls.

Owns retries with bounded exponential backoff, per-attempt timeouts, the
per-call total budget, cancellation and pricing. Every attempt is written
to the cost ledger as its own AgentCall row before the next attempt
starts. Failures are returned on the CallOutcome, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable

from galley.config.settings import Settings
from galley.core.cancellation import CancellationToken
from galley.core.clock import Clock
from galley.core.models import AgentCall, AgentCallStatus
from galley.llm.base_client import BaseLLMClient
from galley.llm.models import (
    CallFailure,
    CallMetadata,
    CallOutcome,
    LLMResponse,
    Message,
    ProviderError,
)
from galley.llm.retry import RetryPolicy
from galley.tracking.cost_calculator import ModelPricing, compute_price
from galley.tracking.ledger import CostLedger

logger = logging.getLogger(__name__)

# validate(text) -> (parsed payload, error message or None)
Validator = Callable[[str], tuple[Any, str | None]]


class _AttemptCancelled(Exception):
    pass


class LLMGateway:
    """Retrying, accounting wrapper around one BaseLLMClient."""

    def __init__(
        self,
        client: BaseLLMClient,
        ledger: CostLedger,
        settings: Settings,
        clock: Clock,
        policy: RetryPolicy | None = None,
        pricing: dict[str, ModelPricing] | None = None,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._clock = clock
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._pricing = pricing
        self._attempt_timeout = settings.gateway_attempt_timeout_s
        self._call_budget = settings.gateway_call_budget_s

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def invoke(
        self,
        model: str,
        messages: list[Message],
        max_output: int,
        temperature: float,
        metadata: CallMetadata,
        cancel: CancellationToken | None = None,
        validate: Validator | None = None,
    ) -> CallOutcome:
        """Run up to N attempts and return the final outcome.

        ``validate`` lets the caller classify a successful response as
        ``parse_error`` on its ledger row; parse errors are not retried here.
        """
        outcome = CallOutcome()
        started = time.monotonic()
        max_attempts = self._policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            if cancel is not None and cancel.cancelled:
                outcome.failure = CallFailure(kind="cancelled", message=cancel.reason or "")
                break

            remaining = self._call_budget - (time.monotonic() - started)
            timeout = min(self._attempt_timeout, max(remaining, 0.0))
            attempt_start = time.monotonic()
            error: ProviderError | None = None
            response: LLMResponse | None = None
            try:
                response = await self._attempt(
                    model, messages, max_output, temperature, timeout, cancel
                )
            except ProviderError as e:
                error = e
            except _AttemptCancelled:
                error = ProviderError("cancelled", cancel.reason if cancel else "")
            except OSError as e:
                error = ProviderError("transport", str(e))
            wall_ms = int((time.monotonic() - attempt_start) * 1000)
            outcome.attempts = attempt

            if response is not None:
                price = compute_price(
                    model, response.input_tokens, response.output_tokens, self._pricing
                )
                status: AgentCallStatus = "ok"
                failure_kind = None
                parsed, parse_error = (None, None)
                if validate is not None:
                    parsed, parse_error = validate(response.content)
                    if parse_error is not None:
                        status, failure_kind = "parse_error", "parse_error"
                call_id = self._record(
                    metadata, model, attempt, status, failure_kind,
                    response.input_tokens, response.output_tokens, price, wall_ms,
                    note=parse_error or "",
                )
                outcome.call_ids.append(call_id)
                outcome.tokens_in += response.input_tokens
                outcome.tokens_out += response.output_tokens
                outcome.price += price
                outcome.text = response.content
                outcome.parsed = parsed
                outcome.failure = (
                    CallFailure(kind="parse_error", message=parse_error)
                    if parse_error is not None else None
                )
                logger.info(
                    "LLM call ok: model=%s agent=%s chunk=%s attempt=%d tokens=%d/%d price=%.6f",
                    model, metadata.agent_kind, metadata.chunk_ordinal, attempt,
                    response.input_tokens, response.output_tokens, price,
                    extra={"call": _call_fields(
                        call_id, model, attempt, status,
                        response.input_tokens, response.output_tokens, price,
                    )},
                )
                break

            assert error is not None
            retryable = self._policy.is_retryable(error.kind)
            price = (
                compute_price(model, error.input_tokens, error.output_tokens, self._pricing)
                if error.input_tokens or error.output_tokens else 0.0
            )
            call_id = self._record(
                metadata, model, attempt,
                "retryable_error" if retryable else "permanent_error",
                error.kind, error.input_tokens, error.output_tokens, price, wall_ms,
                note=str(error)[:500],
            )
            outcome.call_ids.append(call_id)
            outcome.tokens_in += error.input_tokens
            outcome.tokens_out += error.output_tokens
            outcome.price += price
            outcome.failure = CallFailure(kind=error.kind, message=str(error))

            if not retryable or attempt >= max_attempts:
                logger.warning(
                    "LLM call failed: model=%s agent=%s chunk=%s attempt=%d/%d kind=%s",
                    model, metadata.agent_kind, metadata.chunk_ordinal,
                    attempt, max_attempts, error.kind,
                    extra={"call": _call_fields(
                        call_id, model, attempt, error.kind,
                        error.input_tokens, error.output_tokens, price,
                    )},
                )
                break

            delay = self._policy.delay_for(attempt - 1, error.retry_after)
            if time.monotonic() - started + delay >= self._call_budget:
                logger.warning(
                    "LLM call budget of %.1fs exhausted after attempt %d (%s)",
                    self._call_budget, attempt, error.kind,
                )
                break
            logger.warning(
                "LLM call %s: model=%s agent=%s chunk=%s attempt=%d/%d, retrying in %.2fs",
                error.kind, model, metadata.agent_kind, metadata.chunk_ordinal,
                attempt, max_attempts, delay,
            )
            if cancel is not None:
                if await cancel.sleep(delay):
                    outcome.failure = CallFailure(kind="cancelled", message=cancel.reason or "")
                    break
            else:
                await asyncio.sleep(delay)

        outcome.wall_time_ms = int((time.monotonic() - started) * 1000)
        return outcome

    async def _attempt(
        self,
        model: str,
        messages: list[Message],
        max_output: int,
        temperature: float,
        timeout: float,
        cancel: CancellationToken | None,
    ) -> LLMResponse:
        """One provider request raced against the timeout and cancellation."""
        task = asyncio.ensure_future(
            self._client.complete(model, messages, max_output, temperature)
        )
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[Any] | None = None
        if cancel is not None:
            cancel_waiter = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_discard_result)
        if cancel_waiter is not None and cancel_waiter in done:
            raise _AttemptCancelled()
        raise ProviderError("transport", f"Attempt timed out after {timeout:.1f}s")

    def _record(
        self,
        metadata: CallMetadata,
        model: str,
        attempt: int,
        status: AgentCallStatus,
        failure_kind: str | None,
        tokens_in: int,
        tokens_out: int,
        price: float,
        wall_ms: int,
        note: str = "",
    ) -> str:
        call = AgentCall(
            id=uuid.uuid4().hex,
            report_id=metadata.report_id,
            owner_id=metadata.owner_id,
            manuscript_id=metadata.manuscript_id,
            agent_kind=metadata.agent_kind,
            prompt_version=metadata.prompt_version,
            chunk_ordinal=metadata.chunk_ordinal,
            input_hash=metadata.input_hash,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            price=price,
            status=status,
            failure_kind=failure_kind,
            wall_time_ms=wall_ms,
            attempt=attempt,
            note=note,
            created_at=self._clock.now(),
        )
        self._ledger.append(call)
        return call.id


def _call_fields(
    call_id: str, model: str, attempt: int, status: str,
    tokens_in: int, tokens_out: int, price: float,
) -> dict[str, Any]:
    return {
        "call_id": call_id, "model": model, "attempt": attempt, "status": status,
        "tokens_in": tokens_in, "tokens_out": tokens_out, "price": price,
    }


def _discard_result(task: asyncio.Future[Any]) -> None:
    """Retrieve the outcome of an abandoned attempt so it is not reported as lost."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned attempt ended with %r", task.exception())

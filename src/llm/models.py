# src/llm/models.py — v3
"""LLM-specific types: Message, LLMResponse, ProviderError, CallOutcome."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

FailureKind = Literal[
    "transport",
    "rate_limited",
    "server_error",
    "client_error",
    "cancelled",
    "parse_unavailable",
    "parse_error",
]

RETRYABLE_KINDS: frozenset[str] = frozenset({"transport", "rate_limited", "server_error"})


class Message(BaseModel):
    """Single role-tagged message in a conversation."""

    role: Literal["user", "assistant", "system"]
    content: str


class LLMResponse(BaseModel):
    """Normalized response from any LLM provider."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: str
    latency_ms: int
    raw_response: Any = None


class ProviderError(Exception):
    """Provider failure already classified into the gateway taxonomy.

    Adapters translate SDK exceptions into this type; the gateway never
    inspects provider-specific error shapes.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str = "",
        status_code: int | None = None,
        retry_after: float | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        # Usage the provider billed even though the attempt failed
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        super().__init__(message or kind)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class CallMetadata(BaseModel):
    """Opaque accounting metadata carried on every AgentCall row."""

    owner_id: str
    manuscript_id: str | None = None
    report_id: str | None = None
    agent_kind: str | None = None
    prompt_version: str | None = None
    chunk_ordinal: int | None = None
    input_hash: str = ""


class CallFailure(BaseModel):
    kind: FailureKind
    message: str = ""


class CallOutcome(BaseModel):
    """Result of one gateway invocation across all of its attempts.

    Exactly one of ``text`` (success) or ``failure`` is meaningful. Token
    counts and price are summed over every attempt.
    """

    text: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    price: float = 0.0
    wall_time_ms: int = 0
    attempts: int = 0
    call_ids: list[str] = Field(default_factory=list)
    failure: CallFailure | None = None
    parsed: Any = None

    @property
    def ok(self) -> bool:
        return self.failure is None

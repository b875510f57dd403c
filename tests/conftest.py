# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides a scripted LLM client, a fixed clock, settings rooted in a temp
directory and a fully wired service context. No network access: every
provider call goes through ScriptedLLMClient.
"""

from __future__ import annotations

import asyncio
import json
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from galley.config.settings import Settings, load_settings
from galley.llm.base_client import BaseLLMClient
from galley.llm.models import LLMResponse, Message, ProviderError
from galley.pipeline.context import ServiceContext, build_context
from galley.prompts.library import OutputSchema, PromptLibrary
from galley.prompts.templates import default_library

FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

_SAMPLE_VALUES: dict[str, Any] = {
    "string": "sample text",
    "number": 1.5,
    "integer": 3,
    "boolean": True,
    "array": ["first item", "second item"],
    "object": {"note": "sample"},
    "any": "sample",
}


# === HELPERS ===


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class Hang:
    """Script action: never answer (until cancelled or timed out)."""


def sample_payload(schema: OutputSchema) -> Any:
    """Minimal payload satisfying a declared output schema."""
    body = {key: _SAMPLE_VALUES[kind] for key, kind in schema.required.items()}
    return [body] if schema.root == "array" else body


class ScriptedLLMClient(BaseLLMClient):
    """Fake provider answering every agent with a valid sample payload.

    ``script(needle, *actions)`` queues actions for requests whose message
    text contains ``needle``; each matching request consumes one action.
    An action is a ProviderError (raised), a string (returned as the
    completion text), a callable taking the messages, or ``Hang()``.
    """

    def __init__(
        self,
        library: PromptLibrary | None = None,
        input_tokens: int = 1000,
        output_tokens: int = 200,
    ) -> None:
        self._library = library or default_library()
        self._scripts: list[tuple[str, list[Any]]] = []
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.requests: list[list[Message]] = []
        self.on_request: Callable[[list[Message]], None] | None = None
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def provider_name(self) -> str:
        return "scripted"

    def script(self, needle: str, *actions: Any) -> None:
        self._scripts.append((needle, list(actions)))

    def agent_for(self, messages: list[Message]) -> str | None:
        text = "\n".join(m.content for m in messages)
        for template in self._library.templates():
            if template.output_schema.describe() in text:
                return template.agent_kind
        return None

    def requests_for(self, agent_kind: str) -> list[list[Message]]:
        return [m for m in self.requests if self.agent_for(m) == agent_kind]

    async def complete(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        self.requests.append(list(messages))
        if self.on_request is not None:
            self.on_request(messages)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return await self._answer(model, messages)
        finally:
            self.in_flight -= 1

    async def _answer(self, model: str, messages: list[Message]) -> LLMResponse:
        text = "\n".join(m.content for m in messages)
        for needle, actions in self._scripts:
            if needle in text and actions:
                return await self._apply(actions.pop(0), model, messages)

        kind = self.agent_for(messages)
        if kind is None:
            return self._response(model, '{"echo": true}')
        schema = self._library.resolve(kind).output_schema
        return self._response(model, json.dumps(sample_payload(schema)))

    async def _apply(self, action: Any, model: str, messages: list[Message]) -> LLMResponse:
        if isinstance(action, ProviderError):
            raise action
        if isinstance(action, Hang):
            await asyncio.Event().wait()
        if callable(action):
            action = action(messages)
        return self._response(model, str(action))

    def _response(self, model: str, content: str) -> LLMResponse:
        return LLMResponse(
            content=content,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            model=model,
            provider=self.provider_name,
            latency_ms=1,
        )


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_path": tmp_path / "galley.db",
        "blob_root": tmp_path / "blobs",
        "gateway_backoff_base_s": 0.001,
        "gateway_backoff_cap_s": 0.005,
        "gateway_jitter_ratio": 0.0,
        "gateway_attempt_timeout_s": 5.0,
        "gateway_call_budget_s": 30.0,
        "supervisor_max_wall_time_s": 30.0,
        "supervisor_grace_s": 1.0,
        "plan_free_max_running_reports": 5,
        "plan_free_max_calls_per_minute": 20,
    }
    values.update(overrides)
    return load_settings(**values)


# === FIXTURES ===


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def llm() -> ScriptedLLMClient:
    return ScriptedLLMClient()


@pytest.fixture
def hang() -> Hang:
    return Hang()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def make_services(tmp_path: Path, llm: ScriptedLLMClient, clock: FixedClock):
    """Factory building a service context with settings overrides."""
    built: list[ServiceContext] = []

    def factory(**overrides: Any) -> ServiceContext:
        pipelines = overrides.pop("pipelines", None)
        services = build_context(
            make_settings(tmp_path, **overrides),
            llm_client=llm,
            clock=clock,
            rng=random.Random(7),
            pipelines=pipelines,
        )
        built.append(services)
        return services

    yield factory
    for services in built:
        services.close()


@pytest.fixture
def services(make_services) -> ServiceContext:
    return make_services()


@pytest.fixture
def manuscript_text() -> str:
    chapters = []
    for n in range(1, 4):
        paragraphs = [
            f"Paragraph {p} of chapter {n} follows the keeper across the island."
            for p in range(1, 6)
        ]
        chapters.append(f"Chapter {n}\n\n" + "\n\n".join(paragraphs) + "\n\n")
    return "".join(chapters)

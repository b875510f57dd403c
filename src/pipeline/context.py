# src/pipeline/context.py — v1
"""Explicit context records.

``ServiceContext`` groups every collaborator a component may need
(settings, database, blob store, LLM client, clock, randomness, prompt
and pipeline registries, and the services derived from them). Nothing
is module-global: tests build a context with fakes.

``RunContext`` is the per-report state of one pipeline run: the
cancellation token, the bounded-concurrency semaphore F, the in-run
dedup cache and the budget guard.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

from galley.config.pipelines import default_pipelines
from galley.config.settings import Settings
from galley.core.cancellation import CancellationToken
from galley.core.clock import Clock, SystemClock
from galley.core.models import AgentResult, Manuscript, PipelineSpec
from galley.llm.base_client import BaseLLMClient
from galley.llm.client_factory import create_llm_client
from galley.llm.gateway import LLMGateway
from galley.llm.retry import RetryPolicy
from galley.pipeline.budget import BudgetGuard
from galley.pipeline.dag_builder import ExecutionPlan
from galley.prompts.library import PromptLibrary
from galley.prompts.templates import default_library
from galley.storage.base_blob_store import BaseBlobStore
from galley.storage.blob_store_factory import create_blob_store
from galley.storage.database import Database
from galley.storage.manuscripts import ManuscriptRepository
from galley.storage.quotas import QuotaRepository
from galley.storage.report_store import ReportStore
from galley.tracking.budget_alerts import BudgetAlertMonitor
from galley.tracking.ledger import CostLedger

logger = logging.getLogger(__name__)

__all__ = ["Clock", "SystemClock", "ServiceContext", "RunContext", "build_context"]


@dataclass
class ServiceContext:
    settings: Settings
    db: Database
    blobs: BaseBlobStore
    llm_client: BaseLLMClient
    clock: Clock
    rng: random.Random
    prompts: PromptLibrary
    pipelines: dict[str, PipelineSpec]
    ledger: CostLedger
    alerts: BudgetAlertMonitor
    reports: ReportStore
    manuscripts: ManuscriptRepository
    quotas: QuotaRepository
    gateway: LLMGateway

    def close(self) -> None:
        self.db.close()


def build_context(
    settings: Settings,
    *,
    db: Database | None = None,
    blobs: BaseBlobStore | None = None,
    llm_client: BaseLLMClient | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
    prompts: PromptLibrary | None = None,
    pipelines: dict[str, PipelineSpec] | None = None,
) -> ServiceContext:
    """Wire the default collaborators; any of them can be overridden."""
    db = db or Database(settings.database_path)
    blobs = blobs or create_blob_store(settings)
    llm_client = llm_client or create_llm_client(settings)
    clock = clock or SystemClock()
    rng = rng or random.Random()
    prompts = prompts or default_library()
    pipelines = pipelines if pipelines is not None else default_pipelines()

    alerts = BudgetAlertMonitor(
        db, settings.platform_monthly_budget_usd, settings.budget_alert_thresholds_list
    )
    ledger = CostLedger(db, alerts)
    gateway = LLMGateway(
        llm_client, ledger, settings, clock, policy=RetryPolicy.from_settings(settings, rng)
    )

    # Registries are read-only at runtime; persist them for reporting
    active = prompts.active_versions()
    for template in prompts.templates():
        db.save_prompt_template(
            template.agent_kind, template.version, template.model_dump(),
            active=active.get(template.agent_kind) == template.version,
        )
    for spec in pipelines.values():
        db.save_pipeline_spec(spec.id, spec.version, spec.model_dump())

    return ServiceContext(
        settings=settings,
        db=db,
        blobs=blobs,
        llm_client=llm_client,
        clock=clock,
        rng=rng,
        prompts=prompts,
        pipelines=pipelines,
        ledger=ledger,
        alerts=alerts,
        reports=ReportStore(
            db, blobs, ledger, clock, inline_max_bytes=settings.payload_inline_max_bytes
        ),
        manuscripts=ManuscriptRepository(db, blobs, clock),
        quotas=QuotaRepository(db, settings, clock),
        gateway=gateway,
    )


@dataclass
class RunContext:
    """Mutable state of one report run, owned by its orchestrator."""

    report_id: str
    owner_id: str
    manuscript: Manuscript
    text: str
    plan: ExecutionPlan
    token: CancellationToken
    semaphore: asyncio.Semaphore
    budget: BudgetGuard
    results: dict[str, AgentResult] = field(default_factory=dict)
    cache: dict[str, asyncio.Future[Any]] = field(default_factory=dict)
    cache_enabled: bool = True

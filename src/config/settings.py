# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: provider
credentials, gateway retry policy, concurrency bounds, storage backends,
plan quotas and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from galley.core.models import PlanTier, Quota


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM PROVIDER ===
    llm_default_provider: str = "anthropic"
    llm_default_model: str = "claude-sonnet-4-20250514"
    anthropic_api_key: str = ""
    anthropic_base_url: str = ""
    llm_stream: bool = False

    # === Gateway retry policy ===
    gateway_max_attempts: int = 5
    gateway_backoff_base_s: float = 1.0
    gateway_backoff_cap_s: float = 30.0
    gateway_jitter_ratio: float = 0.25
    gateway_attempt_timeout_s: float = 120.0
    gateway_call_budget_s: float = 600.0

    # === Agent runner ===
    repair_enabled: bool = True
    run_cache_enabled: bool = True

    # === Orchestration ===
    pipeline_max_concurrency: int = 4
    process_max_pipelines: int = 8
    report_cost_ceiling_usd: float = 5.0

    # === Supervisor ===
    supervisor_max_wall_time_s: float = 3600.0
    supervisor_grace_s: float = 30.0
    supervisor_sweep_interval_s: float = 60.0

    # === Storage ===
    database_path: Path = Path("~/.galley/galley.db")
    blob_backend: Literal["local", "s3"] = "local"
    blob_root: Path = Path("~/.galley/blobs")
    blob_s3_bucket: str = ""
    blob_s3_prefix: str = "galley/"
    blob_s3_region: str = ""
    payload_inline_max_bytes: int = 2048

    # === Plan quotas ===
    default_plan: PlanTier = "free"
    plan_free_max_running_reports: int = 1
    plan_free_max_monthly_cost_usd: float = 5.0
    plan_free_max_calls_per_minute: int = 6
    plan_free_max_reports_per_month: int = 10
    plan_pro_max_running_reports: int = 3
    plan_pro_max_monthly_cost_usd: float = 50.0
    plan_pro_max_calls_per_minute: int = 30
    plan_pro_max_reports_per_month: int = 100
    plan_enterprise_max_running_reports: int = 10
    plan_enterprise_max_monthly_cost_usd: float = 500.0
    plan_enterprise_max_calls_per_minute: int = 120
    plan_enterprise_max_reports_per_month: int = 1000

    # === Platform budget ===
    platform_monthly_budget_usd: float = 1000.0
    budget_alert_thresholds: str = "50,75,90,100"

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("gateway_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:  # noqa: N805
        if not 1 <= v <= 5:
            raise ValueError("gateway_max_attempts must be between 1 and 5")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.process_max_pipelines < self.pipeline_max_concurrency:
            errors.append("PROCESS_MAX_PIPELINES must be >= PIPELINE_MAX_CONCURRENCY")

        if self.pipeline_max_concurrency < 1:
            errors.append("PIPELINE_MAX_CONCURRENCY must be >= 1")

        if self.gateway_backoff_cap_s < self.gateway_backoff_base_s:
            errors.append("GATEWAY_BACKOFF_CAP_S must be >= GATEWAY_BACKOFF_BASE_S")

        if not 0.0 <= self.gateway_jitter_ratio < 1.0:
            errors.append("GATEWAY_JITTER_RATIO must be in [0, 1)")

        if self.blob_backend == "s3" and not self.blob_s3_bucket:
            errors.append("BLOB_BACKEND=s3 requires BLOB_S3_BUCKET")

        try:
            _ = self.budget_alert_thresholds_list
        except ValueError:
            errors.append("BUDGET_ALERT_THRESHOLDS must be comma-separated numbers")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def budget_alert_thresholds_list(self) -> list[float]:
        """Parse comma-separated alert thresholds (percent of budget)."""
        return sorted(
            float(t.strip()) for t in self.budget_alert_thresholds.split(",") if t.strip()
        )

    def quota_for(self, owner_id: str, plan: PlanTier | None = None) -> Quota:
        """Build the plan-derived quota for an owner."""
        tier = plan or self.default_plan
        return Quota(
            owner_id=owner_id,
            plan=tier,
            max_running_reports=getattr(self, f"plan_{tier}_max_running_reports"),
            max_monthly_cost=getattr(self, f"plan_{tier}_max_monthly_cost_usd"),
            max_calls_per_minute=getattr(self, f"plan_{tier}_max_calls_per_minute"),
            max_reports_per_month=getattr(self, f"plan_{tier}_max_reports_per_month"),
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]

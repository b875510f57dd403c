# src/llm/retry.py — v2
"""Gateway retry policy with bounded exponential backoff.

delay(attempt) = min(cap, base * 2**attempt), scaled by a uniform jitter
in [1 - ratio, 1 + ratio]. A server-advertised retry delay replaces the
computed one. Randomness comes from an injected ``random.Random`` so tests
are reproducible.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from galley.config.settings import Settings
from galley.llm.models import RETRYABLE_KINDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound and backoff parameters for one gateway invocation."""

    max_attempts: int = 5
    base_delay_s: float = 1.0
    cap_delay_s: float = 30.0
    jitter_ratio: float = 0.25
    rng: random.Random = field(default_factory=random.Random, compare=False)

    @classmethod
    def from_settings(cls, settings: Settings, rng: random.Random | None = None) -> RetryPolicy:
        return cls(
            max_attempts=settings.gateway_max_attempts,
            base_delay_s=settings.gateway_backoff_base_s,
            cap_delay_s=settings.gateway_backoff_cap_s,
            jitter_ratio=settings.gateway_jitter_ratio,
            rng=rng or random.Random(),
        )

    @staticmethod
    def is_retryable(kind: str) -> bool:
        return kind in RETRYABLE_KINDS

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after the given failed attempt (0-based)."""
        if retry_after is not None:
            return max(0.0, retry_after)
        delay = min(self.cap_delay_s, self.base_delay_s * (2**attempt))
        if self.jitter_ratio:
            delay *= 1.0 + self.rng.uniform(-self.jitter_ratio, self.jitter_ratio)
        return max(0.0, delay)

# src/core/cancellation.py — v1
"""Cooperative cancellation signal shared by one report run."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """One-shot signal: the first ``cancel`` call wins and fixes the reason."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the signal. Returns False if it was already set."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds; return True if cancelled meanwhile."""
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            return False
        return True

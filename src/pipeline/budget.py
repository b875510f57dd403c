# src/pipeline/budget.py — v2
"""Pre-call cost check for one report run.

Before every gateway invocation the guard compares the report's ledger
total and the owner's monthly ledger total against their limits. A blocked
call is never issued.

Calls already in flight hold a reservation priced at their worst case.
When only those reservations push a total over its limit, the caller waits
for them to settle and re-checks against the ledger, so an estimate never
skips an agent that actual spend would have allowed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from galley.tracking.ledger import CostLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    amount: float


class BudgetGuard:
    def __init__(
        self,
        ledger: CostLedger,
        report_id: str,
        owner_id: str,
        period: str,
        report_ceiling: float,
        monthly_limit: float,
    ) -> None:
        self._ledger = ledger
        self._report_id = report_id
        self._owner_id = owner_id
        self._period = period
        self.report_ceiling = report_ceiling
        self.monthly_limit = monthly_limit
        self._reserved = 0.0
        self._in_flight = 0
        self._settled = asyncio.Condition()

    @property
    def reserved(self) -> float:
        return self._reserved

    async def reserve(self, estimate: float) -> Reservation | None:
        """Admit one call, or return None when recorded spend reaches a limit.

        Waits while in-flight reservations alone would exceed a limit.
        """
        async with self._settled:
            while True:
                report_spent = self._ledger.report_total(self._report_id)
                if report_spent >= self.report_ceiling:
                    logger.warning(
                        "Report ceiling reached: spent %.6f >= %.6f",
                        report_spent, self.report_ceiling,
                    )
                    return None
                owner_spent = self._ledger.owner_period_total(self._owner_id, self._period)
                if owner_spent >= self.monthly_limit:
                    logger.warning(
                        "Owner %s monthly limit reached: spent %.6f >= %.6f",
                        self._owner_id, owner_spent, self.monthly_limit,
                    )
                    return None

                over = (
                    report_spent + self._reserved >= self.report_ceiling
                    or owner_spent + self._reserved >= self.monthly_limit
                )
                if not over or self._in_flight == 0:
                    break
                logger.debug(
                    "Waiting on %d in-flight calls (%.6f reserved) before re-checking spend",
                    self._in_flight, self._reserved,
                )
                await self._settled.wait()

            self._reserved += estimate
            self._in_flight += 1
            return Reservation(estimate)

    async def release(self, reservation: Reservation) -> None:
        async with self._settled:
            if self._in_flight == 0:
                return
            self._in_flight -= 1
            self._reserved = max(0.0, self._reserved - reservation.amount)
            self._settled.notify_all()

# src/storage/report_store.py — v1
"""Report persistence: ``reports`` and ``agent_results`` rows plus payload blobs.

State changes are compare-and-set updates, so only the transitions
queued -> running -> {complete, partial, failed} can ever succeed and a
terminal report is immutable. Payloads above the inline limit go to the
blob store under ``{reportId}/{agentKind}.json``; the row keeps the
pointer and a sha256 of the body. Total cost is always recomputed from
the ledger.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from typing import Any

from galley.core.clock import Clock
from galley.core.errors import (
    ErrorDescriptor,
    GalleyError,
    InvalidTransitionError,
    NotFoundError,
)
from galley.core.models import TERMINAL_STATUSES, AgentResult, ReportAggregate, ReportStatus
from galley.storage.base_blob_store import BaseBlobStore
from galley.storage.database import Database, from_db_time, to_db_time
from galley.tracking.ledger import CostLedger

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running"}),
    "running": frozenset({"complete", "partial", "failed"}),
}

ACTIVE_STATUSES = ("queued", "running")


class ActiveReportExistsError(GalleyError):
    """A non-terminal report already exists for (manuscript, pipeline)."""

    kind = "already_running"


def payload_key(report_id: str, agent_kind: str) -> str:
    return f"{report_id}/{agent_kind}.json"


class ReportStore:
    """Single writer per report (its orchestrator); everyone else reads."""

    def __init__(
        self,
        db: Database,
        blobs: BaseBlobStore,
        ledger: CostLedger,
        clock: Clock,
        inline_max_bytes: int = 2048,
    ) -> None:
        self._db = db
        self._blobs = blobs
        self._ledger = ledger
        self._clock = clock
        self._inline_max = inline_max_bytes

    # --- Lifecycle ---

    def create(
        self,
        manuscript_id: str,
        pipeline_spec_id: str,
        owner_id: str,
        agent_count: int = 0,
    ) -> str:
        """Insert a report in ``queued``.

        Raises:
            ActiveReportExistsError: Another non-terminal report holds the
                (manuscript, pipeline) slot; its id is in ``details``.
        """
        report_id = uuid.uuid4().hex
        try:
            self._db.execute(
                """INSERT INTO reports
                   (id, manuscript_id, owner_id, pipeline_spec_id, status, agent_count, created_at)
                   VALUES (?, ?, ?, ?, 'queued', ?, ?)""",
                (report_id, manuscript_id, owner_id, pipeline_spec_id, agent_count,
                 to_db_time(self._clock.now())),
            )
        except sqlite3.IntegrityError as e:
            existing = self.find_active(manuscript_id, pipeline_spec_id)
            if existing is None:
                raise
            raise ActiveReportExistsError(
                f"Report {existing} is already active", report_id=existing
            ) from e
        logger.info("Report %s queued (manuscript=%s, pipeline=%s)",
                    report_id, manuscript_id, pipeline_spec_id)
        return report_id

    def transition(
        self,
        report_id: str,
        from_status: ReportStatus,
        to_status: ReportStatus,
        error_reason: str | None = None,
        errors: list[ErrorDescriptor] | None = None,
    ) -> None:
        """Atomic compare-and-set state change.

        Raises:
            InvalidTransitionError: Transition not allowed, or the report is
                not currently in ``from_status``.
            NotFoundError: Unknown report.
        """
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
            raise InvalidTransitionError(f"{from_status} -> {to_status} is not allowed")

        now = to_db_time(self._clock.now())
        if to_status == "running":
            cursor = self._db.execute(
                "UPDATE reports SET status = ?, started_at = ? WHERE id = ? AND status = ?",
                (to_status, now, report_id, from_status),
            )
        else:
            cursor = self._db.execute(
                """UPDATE reports
                   SET status = ?, completed_at = ?, error_reason = ?, errors = ?
                   WHERE id = ? AND status = ?""",
                (to_status, now, error_reason,
                 json.dumps([e.model_dump() for e in errors or []]),
                 report_id, from_status),
            )
        if cursor.rowcount != 1:
            current = self.status(report_id)
            raise InvalidTransitionError(
                f"Report {report_id} is {current}, not {from_status}",
                report_id=report_id, current=current,
            )
        logger.info("Report %s: %s -> %s", report_id, from_status, to_status)

    def status(self, report_id: str) -> ReportStatus:
        row = self._db.query_one("SELECT status FROM reports WHERE id = ?", (report_id,))
        if row is None:
            raise NotFoundError(f"Unknown report {report_id}")
        return row["status"]

    # --- Agent results ---

    async def put_agent_result(self, report_id: str, result: AgentResult) -> AgentResult:
        """Upsert the result of one agent while the report is non-terminal.

        Raises:
            InvalidTransitionError: The report is terminal.
        """
        if self.status(report_id) in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Report {report_id} is terminal")

        inline: str | None = None
        ref: str | None = None
        digest: str | None = None
        if result.payload is not None:
            body = json.dumps(result.payload, ensure_ascii=False, sort_keys=True)
            data = body.encode("utf-8")
            if len(data) <= self._inline_max:
                inline = body
            else:
                ref = payload_key(report_id, result.agent_kind)
                digest = hashlib.sha256(data).hexdigest()
                await self._blobs.put(ref, data)

        with self._db.transaction():
            # Re-check after the blob write suspended
            if self.status(report_id) in TERMINAL_STATUSES:
                raise InvalidTransitionError(f"Report {report_id} is terminal")
            self._db.execute(
                """INSERT INTO agent_results
                   (report_id, agent_kind, manuscript_id, status, payload, payload_ref,
                    payload_sha256, error, cost, call_ids, prompt_version, chunk_count,
                    duration_ms, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(report_id, agent_kind) DO UPDATE SET
                       status = excluded.status,
                       payload = excluded.payload,
                       payload_ref = excluded.payload_ref,
                       payload_sha256 = excluded.payload_sha256,
                       error = excluded.error,
                       cost = excluded.cost,
                       call_ids = excluded.call_ids,
                       prompt_version = excluded.prompt_version,
                       chunk_count = excluded.chunk_count,
                       duration_ms = excluded.duration_ms,
                       updated_at = excluded.updated_at""",
                (
                    report_id, result.agent_kind, result.manuscript_id, result.status,
                    inline, ref, digest,
                    result.error.model_dump_json() if result.error else None,
                    result.cost, json.dumps(result.call_ids), result.prompt_version,
                    result.chunk_count, result.duration_ms, to_db_time(self._clock.now()),
                ),
            )
        return result.model_copy(update={"report_id": report_id, "payload_ref": ref})

    def _row_to_result(self, row: sqlite3.Row) -> AgentResult:
        return AgentResult(
            report_id=row["report_id"],
            manuscript_id=row["manuscript_id"],
            agent_kind=row["agent_kind"],
            status=row["status"],
            payload=json.loads(row["payload"]) if row["payload"] is not None else None,
            payload_ref=row["payload_ref"],
            error=ErrorDescriptor.model_validate_json(row["error"]) if row["error"] else None,
            cost=row["cost"],
            call_ids=json.loads(row["call_ids"]),
            prompt_version=row["prompt_version"],
            chunk_count=row["chunk_count"],
            duration_ms=row["duration_ms"],
        )

    async def get_agent_result(self, report_id: str, agent_kind: str) -> AgentResult | None:
        """One result with its payload rehydrated from blob storage if needed."""
        row = self._db.query_one(
            "SELECT * FROM agent_results WHERE report_id = ? AND agent_kind = ?",
            (report_id, agent_kind),
        )
        if row is None:
            return None
        result = self._row_to_result(row)
        if result.payload_ref is not None:
            data = await self._blobs.get(result.payload_ref)
            if hashlib.sha256(data).hexdigest() != row["payload_sha256"]:
                raise GalleyError(f"Payload digest mismatch for {result.payload_ref}")
            result.payload = json.loads(data)
        return result

    async def get_payload(self, report_id: str, agent_kind: str) -> Any:
        result = await self.get_agent_result(report_id, agent_kind)
        return None if result is None else result.payload

    # --- Reads ---

    def get(self, report_id: str) -> ReportAggregate:
        """Rehydrate a report; blob-backed payloads stay lazy (payload_ref only).

        Raises:
            NotFoundError: Unknown report.
        """
        row = self._db.query_one("SELECT * FROM reports WHERE id = ?", (report_id,))
        if row is None:
            raise NotFoundError(f"Unknown report {report_id}")
        results = {
            r["agent_kind"]: self._row_to_result(r)
            for r in self._db.query(
                "SELECT * FROM agent_results WHERE report_id = ? ORDER BY rowid", (report_id,)
            )
        }
        return ReportAggregate(
            id=row["id"],
            manuscript_id=row["manuscript_id"],
            owner_id=row["owner_id"],
            pipeline_spec_id=row["pipeline_spec_id"],
            status=row["status"],
            created_at=from_db_time(row["created_at"]),
            started_at=from_db_time(row["started_at"]),
            completed_at=from_db_time(row["completed_at"]),
            total_cost=self._ledger.report_total(report_id),
            agent_count=row["agent_count"],
            results=results,
            errors=[ErrorDescriptor(**e) for e in json.loads(row["errors"])],
            error_reason=row["error_reason"],
        )

    def find_active(self, manuscript_id: str, pipeline_spec_id: str) -> str | None:
        row = self._db.query_one(
            """SELECT id FROM reports
               WHERE manuscript_id = ? AND pipeline_spec_id = ?
                 AND status IN ('queued', 'running')""",
            (manuscript_id, pipeline_spec_id),
        )
        return None if row is None else row["id"]

    def count_active(self, owner_id: str) -> int:
        return int(self._db.scalar(
            "SELECT COUNT(*) FROM reports WHERE owner_id = ? AND status IN ('queued', 'running')",
            (owner_id,), 0,
        ))

    def stale_running(self, started_before) -> list[str]:
        """Ids of reports still running that started before the cutoff."""
        rows = self._db.query(
            "SELECT id FROM reports WHERE status = 'running' AND started_at < ? ORDER BY started_at",
            (to_db_time(started_before),),
        )
        return [r["id"] for r in rows]

    def stale_queued(self, created_before) -> list[str]:
        rows = self._db.query(
            "SELECT id FROM reports WHERE status = 'queued' AND created_at < ? ORDER BY created_at",
            (to_db_time(created_before),),
        )
        return [r["id"] for r in rows]

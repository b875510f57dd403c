# src/storage/database.py — v1
"""Relational store (stdlib sqlite3, WAL).

One connection per process, used from the event-loop thread only. Writes
that must be atomic run inside ``transaction()`` (BEGIN IMMEDIATE), which
nests by reusing the outer transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS manuscripts (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    genre TEXT NOT NULL,
    word_count INTEGER NOT NULL,
    source_ref TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_manuscripts_owner ON manuscripts(owner_id);

CREATE TABLE IF NOT EXISTS owner_plans (
    owner_id TEXT PRIMARY KEY,
    plan TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS owner_usage (
    owner_id TEXT NOT NULL,
    period TEXT NOT NULL,
    reports_admitted INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (owner_id, period)
);

CREATE TABLE IF NOT EXISTS reports (
    id TEXT PRIMARY KEY,
    manuscript_id TEXT NOT NULL REFERENCES manuscripts(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    pipeline_spec_id TEXT NOT NULL,
    status TEXT NOT NULL,
    agent_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    error_reason TEXT,
    errors TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_reports_owner_status ON reports(owner_id, status);
CREATE UNIQUE INDEX IF NOT EXISTS uq_reports_active
    ON reports(manuscript_id, pipeline_spec_id)
    WHERE status IN ('queued', 'running');

CREATE TABLE IF NOT EXISTS agent_results (
    report_id TEXT NOT NULL REFERENCES reports(id) ON DELETE CASCADE,
    agent_kind TEXT NOT NULL,
    manuscript_id TEXT NOT NULL,
    status TEXT NOT NULL,
    payload TEXT,
    payload_ref TEXT,
    payload_sha256 TEXT,
    error TEXT,
    cost REAL NOT NULL DEFAULT 0,
    call_ids TEXT NOT NULL DEFAULT '[]',
    prompt_version TEXT,
    chunk_count INTEGER NOT NULL DEFAULT 0,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (report_id, agent_kind)
);

CREATE TABLE IF NOT EXISTS agent_calls (
    id TEXT PRIMARY KEY,
    report_id TEXT,
    owner_id TEXT NOT NULL,
    manuscript_id TEXT,
    agent_kind TEXT,
    prompt_version TEXT,
    chunk_ordinal INTEGER,
    input_hash TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL,
    tokens_in INTEGER NOT NULL DEFAULT 0,
    tokens_out INTEGER NOT NULL DEFAULT 0,
    price REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    failure_kind TEXT,
    wall_time_ms INTEGER NOT NULL DEFAULT 0,
    attempt INTEGER NOT NULL DEFAULT 1,
    entry_kind TEXT NOT NULL DEFAULT 'call',
    note TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_agent_calls_report ON agent_calls(report_id);
CREATE INDEX IF NOT EXISTS idx_agent_calls_owner ON agent_calls(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_agent_calls_created ON agent_calls(created_at);

CREATE TABLE IF NOT EXISTS pipeline_specs (
    id TEXT PRIMARY KEY,
    version TEXT NOT NULL,
    spec TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS prompt_templates (
    agent_kind TEXT NOT NULL,
    version TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 0,
    template TEXT NOT NULL,
    PRIMARY KEY (agent_kind, version)
);

CREATE TABLE IF NOT EXISTS budget_alerts (
    period TEXT NOT NULL,
    threshold REAL NOT NULL,
    spend REAL NOT NULL,
    budget REAL NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (period, threshold)
);
"""


def to_db_time(moment: datetime | None) -> str | None:
    """Normalize to a UTC ISO string so lexical order equals time order."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Thin wrapper over a sqlite3 connection holding the galley schema."""

    def __init__(self, path: Path | str = ":memory:") -> None:
        if str(path) != ":memory:":
            path = Path(path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
        self._path = str(path)
        self._conn = sqlite3.connect(
            self._path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._depth = 0
        logger.debug("Opened database %s", self._path)

    @property
    def path(self) -> str:
        return self._path

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, tuple(params))

    def query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        return self._conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Row | None:
        return self._conn.execute(sql, tuple(params)).fetchone()

    def scalar(self, sql: str, params: Iterable[Any] = (), default: Any = None) -> Any:
        row = self.query_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Atomic unit of work; nested calls join the outer transaction."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._depth = 0

    # --- Shared configuration rows ---

    def save_pipeline_spec(self, spec_id: str, version: str, spec: dict[str, Any]) -> None:
        self.execute(
            """INSERT INTO pipeline_specs (id, version, spec, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   version = excluded.version,
                   spec = excluded.spec,
                   updated_at = excluded.updated_at""",
            (spec_id, version, json.dumps(spec), to_db_time(datetime.now(timezone.utc))),
        )

    def save_prompt_template(
        self, agent_kind: str, version: str, template: dict[str, Any], active: bool
    ) -> None:
        self.execute(
            """INSERT INTO prompt_templates (agent_kind, version, active, template)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(agent_kind, version) DO UPDATE SET
                   active = excluded.active,
                   template = excluded.template""",
            (agent_kind, version, int(active), json.dumps(template)),
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

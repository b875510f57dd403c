# src/storage/manuscripts.py — v1
"""Manuscript registration and loading.

The row holds metadata; the text lives in the blob store under
``{manuscriptId}/source``. Deleting a manuscript cascades to its reports,
agent results and payload blobs. Ledger rows are kept.
"""

from __future__ import annotations

import logging
import uuid

from galley.core.clock import Clock
from galley.core.models import Manuscript
from galley.storage.base_blob_store import BaseBlobStore
from galley.storage.database import Database, from_db_time, to_db_time

logger = logging.getLogger(__name__)


def source_key(manuscript_id: str) -> str:
    return f"{manuscript_id}/source"


class ManuscriptRepository:
    def __init__(self, db: Database, blobs: BaseBlobStore, clock: Clock) -> None:
        self._db = db
        self._blobs = blobs
        self._clock = clock

    async def register(
        self,
        owner_id: str,
        title: str,
        text: str,
        genre: str = "general",
        word_count: int | None = None,
        manuscript_id: str | None = None,
    ) -> Manuscript:
        """Store the text blob, then the metadata row."""
        manuscript_id = manuscript_id or uuid.uuid4().hex
        manuscript = Manuscript(
            id=manuscript_id,
            owner_id=owner_id,
            title=title,
            genre=genre,
            word_count=word_count if word_count is not None else len(text.split()),
            source_ref=source_key(manuscript_id),
            created_at=self._clock.now(),
        )
        await self._blobs.put(manuscript.source_ref, text.encode("utf-8"))
        self._db.execute(
            """INSERT INTO manuscripts
               (id, owner_id, title, genre, word_count, source_ref, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (manuscript.id, owner_id, title, genre, manuscript.word_count,
             manuscript.source_ref, to_db_time(manuscript.created_at)),
        )
        logger.info("Registered manuscript %s (%d words) for %s",
                    manuscript.id, manuscript.word_count, owner_id)
        return manuscript

    def get(self, manuscript_id: str) -> Manuscript | None:
        row = self._db.query_one("SELECT * FROM manuscripts WHERE id = ?", (manuscript_id,))
        if row is None:
            return None
        return Manuscript(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            genre=row["genre"],
            word_count=row["word_count"],
            source_ref=row["source_ref"],
            created_at=from_db_time(row["created_at"]),
        )

    def list_for_owner(self, owner_id: str) -> list[Manuscript]:
        rows = self._db.query(
            "SELECT id FROM manuscripts WHERE owner_id = ? ORDER BY created_at", (owner_id,)
        )
        return [m for m in (self.get(r["id"]) for r in rows) if m is not None]

    async def load_text(self, manuscript: Manuscript) -> str:
        return (await self._blobs.get(manuscript.source_ref)).decode("utf-8")

    async def delete(self, manuscript_id: str) -> None:
        """Remove the manuscript with its reports, results and blobs."""
        manuscript = self.get(manuscript_id)
        if manuscript is None:
            return
        refs = [
            r["payload_ref"]
            for r in self._db.query(
                """SELECT ar.payload_ref FROM agent_results ar
                   JOIN reports r ON r.id = ar.report_id
                   WHERE r.manuscript_id = ? AND ar.payload_ref IS NOT NULL""",
                (manuscript_id,),
            )
        ]
        self._db.execute("DELETE FROM manuscripts WHERE id = ?", (manuscript_id,))
        for ref in refs:
            await self._blobs.delete(ref)
        await self._blobs.delete(manuscript.source_ref)
        logger.info("Deleted manuscript %s (%d payload blobs)", manuscript_id, len(refs))

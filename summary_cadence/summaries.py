"""
Summary Store - append-only versioned rows per session

Only the newest row is ever read; older rows beyond the retention window are
pruned on insert.
"""

from typing import Any, Dict, List, Optional
import asyncio
import logging
from .db import Database
from .errors import TransientStoreError
from .models import SummaryRow, InsertedSummary
from .utils import Clock, now_ms

logger = logging.getLogger(__name__)


def _row_to_summary(row: Dict[str, Any]) -> SummaryRow:
    return SummaryRow(
        sessionId=row["session_id"],
        version=int(row["version"]),
        text=row.get("text") or "",
        lastMessageTs=row.get("last_message_ts"),
        createdAt=int(row["created_at"]),
        updatedAt=int(row["updated_at"]),
        meta=row.get("meta")
    )


class PostgresSummaryStore:
    def __init__(self, db: Database, retain: int = 5, clock: Optional[Clock] = None):
        self.db = db
        self.retain = retain
        self.clock = clock or now_ms

    async def get_latest(self, session_id: str) -> Optional[SummaryRow]:
        try:
            row = await self.db.fetchone(
                """
                SELECT session_id, version, text, last_message_ts, meta, created_at, updated_at
                FROM session_summaries
                WHERE session_id = $1
                ORDER BY version DESC
                LIMIT 1
                """,
                session_id
            )
        except Exception as e:
            raise TransientStoreError(f"session_summaries read failed: {e}") from e
        return _row_to_summary(row) if row else None

    async def insert(
        self,
        session_id: str,
        text: str,
        last_message_ts: Optional[int],
        meta: Optional[Dict[str, Any]] = None
    ) -> InsertedSummary:
        """
        Append the next version for the session.

        Two racing writers compute the same version; the loser hits the
        (session_id, version) unique constraint and gets TransientStoreError.
        """
        now = self.clock()
        try:
            async with self.db.transaction() as conn:
                latest = await conn.fetchval(
                    "SELECT MAX(version) FROM session_summaries WHERE session_id = $1",
                    session_id
                )
                version = int(latest or 0) + 1
                await conn.execute(
                    """
                    INSERT INTO session_summaries (
                        session_id, version, text, last_message_ts, meta, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $6)
                    """,
                    session_id,
                    version,
                    text,
                    last_message_ts,
                    meta,
                    now
                )
                if self.retain > 0:
                    await conn.execute(
                        """
                        DELETE FROM session_summaries
                        WHERE session_id = $1 AND version <= $2
                        """,
                        session_id,
                        version - self.retain
                    )
        except Exception as e:
            logger.error(f"Failed to insert summary for {session_id}: {e}")
            raise TransientStoreError(f"session_summaries insert failed: {e}") from e

        logger.info(f"Persisted summary session={session_id} version={version} len={len(text or '')}")
        return InsertedSummary(version=version, updatedAt=now)

    async def list_versions(self, session_id: str) -> List[int]:
        """Retained versions, newest first"""
        try:
            rows = await self.db.fetch(
                "SELECT version FROM session_summaries WHERE session_id = $1 ORDER BY version DESC",
                session_id
            )
        except Exception as e:
            raise TransientStoreError(f"session_summaries read failed: {e}") from e
        return [int(row["version"]) for row in rows]


class MemorySummaryStore:
    def __init__(self, retain: int = 5, clock: Optional[Clock] = None):
        self.retain = retain
        self.clock = clock or now_ms
        self._rows: Dict[str, List[SummaryRow]] = {}  # newest first
        self._lock = asyncio.Lock()

    async def get_latest(self, session_id: str) -> Optional[SummaryRow]:
        rows = self._rows.get(session_id)
        return rows[0].model_copy() if rows else None

    async def insert(
        self,
        session_id: str,
        text: str,
        last_message_ts: Optional[int],
        meta: Optional[Dict[str, Any]] = None
    ) -> InsertedSummary:
        async with self._lock:
            now = self.clock()
            rows = self._rows.setdefault(session_id, [])
            version = rows[0].version + 1 if rows else 1
            rows.insert(0, SummaryRow(
                sessionId=session_id,
                version=version,
                text=text,
                lastMessageTs=last_message_ts,
                createdAt=now,
                updatedAt=now,
                meta=meta
            ))
            if self.retain > 0:
                del rows[self.retain:]
        logger.info(f"Persisted summary session={session_id} version={version} len={len(text or '')}")
        return InsertedSummary(version=version, updatedAt=now)

    async def list_versions(self, session_id: str) -> List[int]:
        return [row.version for row in self._rows.get(session_id, [])]

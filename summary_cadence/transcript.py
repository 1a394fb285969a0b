"""Transcript store: one row per conversation turn, read-only to the cadence core."""

from typing import Dict, List, Optional
import asyncio
import logging
from .db import Database
from .errors import TransientStoreError
from .models import Turn

logger = logging.getLogger(__name__)


class PostgresTranscriptStore:
    def __init__(self, db: Database):
        self.db = db

    async def append_turn(
        self,
        session_id: str,
        message_id: str,
        role: str,
        text: Optional[str],
        ts: int
    ) -> bool:
        """Insert a turn; returns False when (session_id, message_id) already exists."""
        try:
            status = await self.db.execute(
                """
                INSERT INTO interactions (session_id, message_id, role, text, ts)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (session_id, message_id) DO NOTHING
                """,
                session_id,
                message_id,
                role,
                text,
                ts
            )
        except Exception as e:
            raise TransientStoreError(f"interactions insert failed: {e}") from e
        return status.endswith(" 1")

    async def list_recent_turns(self, session_id: str, limit: int = 200) -> List[Turn]:
        """Most recent ``limit`` turns, oldest first."""
        try:
            rows = await self.db.fetch(
                """
                SELECT session_id, message_id, role, text, ts
                FROM (
                    SELECT session_id, message_id, role, text, ts, id
                    FROM interactions
                    WHERE session_id = $1
                    ORDER BY ts DESC, id DESC
                    LIMIT $2
                ) recent
                ORDER BY ts ASC, id ASC
                """,
                session_id,
                limit
            )
        except Exception as e:
            raise TransientStoreError(f"interactions read failed: {e}") from e
        return [
            Turn(
                sessionId=row["session_id"],
                messageId=row["message_id"],
                role=row["role"],
                text=row.get("text"),
                ts=int(row["ts"])
            )
            for row in rows
        ]


class MemoryTranscriptStore:
    def __init__(self):
        self._turns: Dict[str, List[Turn]] = {}
        self._lock = asyncio.Lock()

    async def append_turn(
        self,
        session_id: str,
        message_id: str,
        role: str,
        text: Optional[str],
        ts: int
    ) -> bool:
        async with self._lock:
            turns = self._turns.setdefault(session_id, [])
            if any(t.messageId == message_id for t in turns):
                return False
            turns.append(Turn(sessionId=session_id, messageId=message_id, role=role, text=text, ts=ts))
            turns.sort(key=lambda t: t.ts)
            return True

    async def list_recent_turns(self, session_id: str, limit: int = 200) -> List[Turn]:
        turns = self._turns.get(session_id, [])
        if limit <= 0:
            return []
        return [t.model_copy() for t in turns[-limit:]]

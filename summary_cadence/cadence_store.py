"""
Cadence State Store

One mutable record per session, always read-modified-written as a unit:
- Postgres: SELECT ... FOR UPDATE inside a transaction, so interleaved
  updates for the same session serialize across processes
- Memory: a single asyncio.Lock, for one-process dev and tests
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
import asyncio
import logging
from .db import Database
from .errors import TransientStoreError
from .models import CadenceState

logger = logging.getLogger(__name__)

T = TypeVar("T")
Apply = Callable[[CadenceState], Tuple[CadenceState, T]]

_STATE_COLUMNS = """
    session_id, turns_since, assistant_msg_since,
    last_generated_at, last_version, lock_until
"""


def _state_from_row(row: Dict[str, Any]) -> CadenceState:
    return CadenceState(
        session_id=row["session_id"],
        turns_since=int(row.get("turns_since") or 0),
        assistant_msg_since=int(row.get("assistant_msg_since") or 0),
        last_generated_at=int(row.get("last_generated_at") or 0),
        last_version=int(row.get("last_version") or 0),
        lock_until=int(row.get("lock_until") or 0)
    )


class PostgresCadenceStore:
    def __init__(self, db: Database):
        self.db = db

    async def get(self, session_id: str) -> Optional[CadenceState]:
        try:
            row = await self.db.fetchone(
                f"SELECT {_STATE_COLUMNS} FROM summary_state WHERE session_id = $1",
                session_id
            )
        except Exception as e:
            raise TransientStoreError(f"summary_state read failed: {e}") from e
        return _state_from_row(row) if row else None

    async def update(
        self,
        session_id: str,
        apply: Apply,
        create: bool = False
    ) -> Optional[T]:
        """
        Atomically apply ``apply`` to the session's record.

        Returns whatever ``apply`` returned alongside the new state, or None when
        the record does not exist and ``create`` is False. Nothing is written if
        ``apply`` raises.
        """
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {_STATE_COLUMNS}
                    FROM summary_state
                    WHERE session_id = $1
                    FOR UPDATE
                    """,
                    session_id
                )

                if row is None:
                    if not create:
                        return None
                    await conn.execute(
                        """
                        INSERT INTO summary_state (session_id)
                        VALUES ($1)
                        ON CONFLICT (session_id) DO NOTHING
                        """,
                        session_id
                    )
                    row = await conn.fetchrow(
                        f"""
                        SELECT {_STATE_COLUMNS}
                        FROM summary_state
                        WHERE session_id = $1
                        FOR UPDATE
                        """,
                        session_id
                    )

                state, outcome = apply(_state_from_row(dict(row)))

                await conn.execute(
                    """
                    UPDATE summary_state
                    SET
                        turns_since = $2,
                        assistant_msg_since = $3,
                        last_generated_at = $4,
                        last_version = $5,
                        lock_until = $6,
                        updated_at = NOW()
                    WHERE session_id = $1
                    """,
                    session_id,
                    state.turns_since,
                    state.assistant_msg_since,
                    state.last_generated_at,
                    state.last_version,
                    state.lock_until
                )
                return outcome

        except TransientStoreError:
            raise
        except Exception as e:
            logger.error(f"Failed to update summary_state for {session_id}: {e}")
            raise TransientStoreError(f"summary_state update failed: {e}") from e

    async def list_expired_locks(self, now: int, limit: int = 100) -> List[CadenceState]:
        try:
            rows = await self.db.fetch(
                f"""
                SELECT {_STATE_COLUMNS}
                FROM summary_state
                WHERE lock_until > 0 AND lock_until <= $1
                ORDER BY lock_until ASC
                LIMIT $2
                """,
                now,
                limit
            )
        except Exception as e:
            raise TransientStoreError(f"summary_state scan failed: {e}") from e
        return [_state_from_row(row) for row in rows]


class MemoryCadenceStore:
    def __init__(self):
        self._records: Dict[str, CadenceState] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[CadenceState]:
        state = self._records.get(session_id)
        return state.model_copy() if state else None

    async def update(
        self,
        session_id: str,
        apply: Apply,
        create: bool = False
    ) -> Optional[T]:
        async with self._lock:
            current = self._records.get(session_id)
            if current is None:
                if not create:
                    return None
                current = CadenceState(session_id=session_id)
            state, outcome = apply(current.model_copy())
            self._records[session_id] = state
            return outcome

    async def list_expired_locks(self, now: int, limit: int = 100) -> List[CadenceState]:
        expired = [
            state.model_copy()
            for state in self._records.values()
            if 0 < state.lock_until <= now
        ]
        expired.sort(key=lambda s: s.lock_until)
        return expired[:limit]

"""
Cadence Tracker and Lock Coordinator

Decides when a session's rolling summary is due and hands out the per-session
regeneration lock. The lock is a timestamp on the cadence record: any reader
treats ``lock_until <= now`` as unlocked, so a crashed holder cannot deadlock
the session. There is no lease renewal.

After every successful acquisition exactly one of ``release_lock`` (failure
path) or ``on_generated`` (success path) must follow.
"""

from typing import Optional, Tuple
import logging
from .config import Settings, get_settings
from .models import CadenceState, CadenceVerdict, CadenceStateView, CadenceReason
from .utils import Clock, now_ms, age_seconds

logger = logging.getLogger(__name__)

# Reported as ageSec for a session that has never generated: the largest
# integer a JSON client reads exactly. The time rule never fires on it.
NEVER_GENERATED_AGE_SEC = 2**53 - 1


def compute_age_sec(last_generated_at: int, now: int) -> int:
    if last_generated_at <= 0:
        return NEVER_GENERATED_AGE_SEC
    return age_seconds(last_generated_at, now)


def due_reason(
    assistant_msg_since: int,
    last_generated_at: int,
    age_sec: int,
    every_n: int,
    max_age_sec: int
) -> Optional[CadenceReason]:
    """Count rule first, then time rule. None when neither fires."""
    if every_n > 0 and assistant_msg_since >= every_n:
        return "assistant_modulo"
    if last_generated_at > 0 and max_age_sec > 0 and age_sec >= max_age_sec:
        return "time"
    return None


def apply_assistant_turn(
    state: CadenceState,
    now: int,
    every_n: int,
    max_age_sec: int,
    lock_ms: int
) -> Tuple[CadenceState, CadenceVerdict]:
    """Pure counter increment, due check and lock acquisition for one signal."""
    state.turns_since += 1
    state.assistant_msg_since += 1

    age_sec = compute_age_sec(state.last_generated_at, now)
    reason = due_reason(
        state.assistant_msg_since,
        state.last_generated_at,
        age_sec,
        every_n,
        max_age_sec
    )
    due_now = reason is not None

    locked = False
    if due_now and not state.is_locked(now):
        state.lock_until = now + lock_ms
        locked = True

    verdict = CadenceVerdict(
        dueNow=due_now,
        locked=locked,
        reason=reason,
        turnsSince=state.turns_since,
        assistantMsgSince=state.assistant_msg_since,
        ageSec=age_sec
    )
    return state, verdict


class CadenceTracker:
    def __init__(self, store, settings: Optional[Settings] = None, clock: Optional[Clock] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or now_ms

    async def on_assistant_turn(
        self,
        session_id: str,
        last_known_version: Optional[int] = None
    ) -> CadenceVerdict:
        """
        Record an assistant turn and report whether regeneration is due.

        Counter increment and lock acquisition happen in one store update. When
        the verdict is ``dueNow`` but not ``locked`` another task holds the lock
        and the caller must not start a second generation.
        """
        now = self.clock()
        settings = self.settings

        def _apply(state: CadenceState) -> Tuple[CadenceState, CadenceVerdict]:
            if state.turns_since == 0 and state.last_version == 0 and last_known_version:
                # Fresh record: seed from what the caller last observed.
                state.last_version = last_known_version
            return apply_assistant_turn(
                state,
                now,
                every_n=settings.summary_generate_assistant_every_n,
                max_age_sec=settings.summary_generate_seconds,
                lock_ms=settings.summary_lock_ms
            )

        verdict = await self.store.update(session_id, _apply, create=True)
        logger.info(
            f"summary_cadence_onAssistantMessage session={session_id} "
            f"due={verdict.dueNow} locked={verdict.locked} reason={verdict.reason} "
            f"assistant_since={verdict.assistantMsgSince} turns_since={verdict.turnsSince}"
        )
        return verdict

    async def try_acquire_lock(self, session_id: str) -> bool:
        """Take the lock without touching the counters (manual regeneration)."""
        now = self.clock()
        lock_ms = self.settings.summary_lock_ms

        def _apply(state: CadenceState) -> Tuple[CadenceState, bool]:
            if state.is_locked(now):
                return state, False
            state.lock_until = now + lock_ms
            return state, True

        acquired = await self.store.update(session_id, _apply, create=True)
        logger.info(f"Manual lock attempt for {session_id}: acquired={acquired}")
        return bool(acquired)

    async def release_lock(self, session_id: str) -> bool:
        """
        Clear the lock. Returns False when the session has no cadence record;
        releasing an unlocked session is a no-op success.
        """
        def _apply(state: CadenceState) -> Tuple[CadenceState, bool]:
            state.lock_until = 0
            return state, True

        released = await self.store.update(session_id, _apply, create=False)
        if released is None:
            logger.warning(f"release_lock: no cadence state for {session_id}")
            return False
        logger.info(f"Released summary lock for {session_id}")
        return True

    async def clear_expired_lock(self, session_id: str) -> bool:
        """Zero ``lock_until`` only if it has already passed."""
        now = self.clock()

        def _apply(state: CadenceState) -> Tuple[CadenceState, bool]:
            if state.lock_until == 0 or state.is_locked(now):
                return state, False
            state.lock_until = 0
            return state, True

        return bool(await self.store.update(session_id, _apply, create=False))

    async def on_generated(self, session_id: str, new_version: int, generated_at: int) -> bool:
        """
        Commit point after a SummaryRow was persisted: rearm the counters and
        clear the lock together. Returns False when the record does not exist.
        """
        def _apply(state: CadenceState) -> Tuple[CadenceState, bool]:
            state.turns_since = 0
            state.assistant_msg_since = 0
            state.lock_until = 0
            state.last_generated_at = generated_at
            state.last_version = new_version
            return state, True

        ok = await self.store.update(session_id, _apply, create=False)
        if ok is None:
            logger.warning(f"on_generated: no cadence state for {session_id}")
            return False
        return True

    async def get_state(self, session_id: str) -> CadenceStateView:
        """Read-only view; a missing record reports zeros."""
        state = await self.store.get(session_id)
        threshold = self.settings.summary_generate_assistant_every_n
        if state is None:
            return CadenceStateView(sessionId=session_id, thresholdTurns=threshold)
        return CadenceStateView(
            sessionId=session_id,
            turnsSince=state.turns_since,
            assistantMsgSince=state.assistant_msg_since,
            lastGeneratedAt=state.last_generated_at,
            lastVersion=state.last_version,
            lockUntil=state.lock_until,
            locked=state.is_locked(self.clock()),
            thresholdTurns=threshold
        )

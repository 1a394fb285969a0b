"""
Generation Orchestrator

Runs one regeneration round for a session whose cadence verdict was
``dueNow and locked``:

1. read the latest summary (previous text + cutoff)
2. select the turn window after the cutoff
3. call the generator
4. blank result -> reuse the previous text verbatim without advancing the
   cutoff, or skip when there is nothing to reuse
5. persist a new version
6. commit via on_generated (counters reset + lock cleared together)

Every failure before the commit releases the lock without touching the
counters, so the next cadence signal retries the round.
"""

from typing import Any, Dict, List, Optional
import logging
from .cadence import CadenceTracker
from .config import Settings, get_settings
from .errors import CadenceError
from .models import CadenceVerdict, GenerationResult
from .utils import Clock, now_ms, preview
from .window import TurnWindowSelector

logger = logging.getLogger(__name__)


class SummaryOrchestrator:
    def __init__(
        self,
        tracker: CadenceTracker,
        summaries,
        selector: TurnWindowSelector,
        generator,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None
    ):
        self.tracker = tracker
        self.summaries = summaries
        self.selector = selector
        self.generator = generator
        self.settings = settings or get_settings()
        self.clock = clock or now_ms

    async def maybe_regenerate(
        self,
        session_id: str,
        verdict: CadenceVerdict,
        client_turns: Optional[List[Dict[str, Any]]] = None,
        request_id: Optional[str] = None
    ) -> GenerationResult:
        if not (verdict.dueNow and verdict.locked):
            # Someone else holds the lock (or nothing is due): do not touch it.
            return GenerationResult(sessionId=session_id, status="skipped_locked", reason=verdict.reason)
        return await self.run_locked(session_id, verdict.reason, client_turns, request_id)

    async def run_locked(
        self,
        session_id: str,
        reason: Optional[str],
        client_turns: Optional[List[Dict[str, Any]]] = None,
        request_id: Optional[str] = None
    ) -> GenerationResult:
        """Run a round for a session whose lock the caller already holds."""
        try:
            result = await self._run_round(session_id, reason, client_turns, request_id)
        except Exception as e:
            logger.error(f"Summary generation failed for {session_id}: {e}")
            await self._release_quietly(session_id)
            raise

        if result.status == "skipped_empty":
            await self._release_quietly(session_id)
            return result

        await self.tracker.on_generated(session_id, result.version, result.generatedAt)
        logger.info(
            f"summary_cadence_generated session={session_id} version={result.version} "
            f"status={result.status} len={result.textLength}"
        )
        return result

    async def _run_round(
        self,
        session_id: str,
        reason: Optional[str],
        client_turns: Optional[List[Dict[str, Any]]],
        request_id: Optional[str]
    ) -> GenerationResult:
        token_budget = self.settings.summary_token_budget

        latest = await self.summaries.get_latest(session_id)
        prev_text = latest.text if latest else ""
        cutoff_ts = (latest.lastMessageTs or 0) if latest else 0

        turns = await self.selector.select_window(session_id, cutoff_ts, client_turns)

        generated = await self.generator.generate(
            session_id,
            prev_text,
            turns,
            token_budget,
            request_id=request_id
        )

        if generated.text and generated.text.strip():
            text = generated.text
            effective_last_message_ts = self.clock()
            status = "generated"
            source = "generator"
        elif prev_text.strip():
            logger.warning(f"Generator returned empty text for {session_id}; reusing previous summary")
            text = prev_text
            effective_last_message_ts = cutoff_ts
            status = "reused_previous"
            source = "previous"
        else:
            logger.info(f"Generator returned empty text for {session_id} and no previous summary; skipping")
            return GenerationResult(sessionId=session_id, status="skipped_empty", reason=reason)

        meta = {
            "provider": generated.provider,
            "modelId": generated.modelId,
            "tokenBudget": token_budget,
            "reason": reason,
            "source": source,
            "turns": len(turns)
        }
        inserted = await self.summaries.insert(session_id, text, effective_last_message_ts, meta)
        logger.debug(f"Summary v{inserted.version} for {session_id}: {preview(text)}")

        return GenerationResult(
            sessionId=session_id,
            status=status,
            version=inserted.version,
            lastMessageTs=effective_last_message_ts,
            textLength=len(text),
            reason=reason,
            generatedAt=inserted.updatedAt
        )

    async def _release_quietly(self, session_id: str) -> None:
        try:
            await self.tracker.release_lock(session_id)
        except CadenceError as e:
            # The lock still self-expires after its TTL.
            logger.error(f"Failed to release summary lock for {session_id}: {e}")

    async def regenerate_safely(
        self,
        session_id: str,
        verdict: CadenceVerdict,
        client_turns: Optional[List[Dict[str, Any]]] = None,
        request_id: Optional[str] = None
    ) -> Optional[GenerationResult]:
        """Fire-and-forget wrapper: a failed round is logged, never raised."""
        try:
            return await self.maybe_regenerate(session_id, verdict, client_turns, request_id)
        except Exception as e:
            logger.error(f"Background summary generation for {session_id} failed: {e}")
            return None

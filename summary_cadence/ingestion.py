"""
Interaction Ingestion

Flow:
1. Append the turn to the transcript
2. On an assistant turn, signal the cadence tracker
3. If due and the lock was acquired, schedule regeneration (background by
   default, inline when configured)
4. Return the verdict; a cadence or generation failure never fails the request
"""

from typing import Optional
import logging
from fastapi import BackgroundTasks
from .config import get_settings
from .errors import CadenceError
from .models import InteractionRequest, InteractionResponse
from . import pipeline

logger = logging.getLogger(__name__)


async def record_interaction(
    request: InteractionRequest,
    background_tasks: BackgroundTasks,
    request_id: Optional[str] = None
) -> InteractionResponse:
    session_id = request.sessionId

    # 1. RECORD TURN (a store failure here fails the request)
    inserted = await pipeline.record_turn(
        session_id=session_id,
        message_id=request.messageId,
        role=request.role,
        text=request.text,
        ts=request.ts
    )
    if not inserted:
        logger.info(f"Duplicate interaction {request.messageId} for {session_id}; skipping cadence")
        return InteractionResponse(ok=True, sessionId=session_id)

    if request.role != "assistant":
        return InteractionResponse(ok=True, sessionId=session_id)

    # 2. CADENCE SIGNAL
    try:
        verdict = await pipeline.on_assistant_turn(session_id)
    except CadenceError as e:
        logger.error(f"Cadence update failed for {session_id}: {e}")
        return InteractionResponse(ok=True, sessionId=session_id, cadence=None)

    if not (verdict.dueNow and verdict.locked):
        return InteractionResponse(ok=True, sessionId=session_id, cadence=verdict)

    # 3. REGENERATE
    if get_settings().summary_generate_inline:
        await pipeline.regenerate_safely(session_id, verdict, request.recentMessages, request_id)
    else:
        logger.info(f"Scheduling summary regeneration for {session_id} (reason={verdict.reason})")
        background_tasks.add_task(
            pipeline.regenerate_safely,
            session_id,
            verdict,
            request.recentMessages,
            request_id
        )

    return InteractionResponse(ok=True, sessionId=session_id, cadence=verdict, generationScheduled=True)

"""
Summary pipeline wiring.

Builds the stores for the configured backend and the tracker, selector,
generator and orchestrator on top of them. The module-level functions are
what request handlers and scripts call.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
from .cadence import CadenceTracker
from .cadence_store import MemoryCadenceStore, PostgresCadenceStore
from .config import Settings, get_settings
from .db import Database
from .generator_client import build_generator
from .models import CadenceStateView, CadenceVerdict, GenerationResult, SummaryRow
from .orchestrator import SummaryOrchestrator
from .summaries import MemorySummaryStore, PostgresSummaryStore
from .transcript import MemoryTranscriptStore, PostgresTranscriptStore
from .utils import Clock, now_ms
from .window import TurnWindowSelector

logger = logging.getLogger(__name__)


@dataclass
class SummaryPipeline:
    tracker: CadenceTracker
    summaries: Any
    transcript: Any
    selector: TurnWindowSelector
    orchestrator: SummaryOrchestrator


def build_pipeline(
    db: Optional[Database] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    generator: Any = None
) -> SummaryPipeline:
    settings = settings or get_settings()
    clock = clock or now_ms

    if settings.use_memory_backend:
        cadence_store = MemoryCadenceStore()
        summaries = MemorySummaryStore(retain=settings.summary_retain_versions, clock=clock)
        transcript = MemoryTranscriptStore()
    else:
        if db is None:
            raise RuntimeError("Postgres backend requires a Database")
        cadence_store = PostgresCadenceStore(db)
        summaries = PostgresSummaryStore(db, retain=settings.summary_retain_versions, clock=clock)
        transcript = PostgresTranscriptStore(db)

    tracker = CadenceTracker(cadence_store, settings=settings, clock=clock)
    selector = TurnWindowSelector(transcript, settings=settings)
    orchestrator = SummaryOrchestrator(
        tracker,
        summaries,
        selector,
        generator or build_generator(),
        settings=settings,
        clock=clock
    )
    return SummaryPipeline(
        tracker=tracker,
        summaries=summaries,
        transcript=transcript,
        selector=selector,
        orchestrator=orchestrator
    )


# Module-level singleton
_pipeline: Optional[SummaryPipeline] = None


def init_pipeline(db: Optional[Database] = None, **kwargs) -> SummaryPipeline:
    """Initialize the summary pipeline"""
    global _pipeline
    _pipeline = build_pipeline(db, **kwargs)
    logger.info(f"Summary pipeline initialized (backend={get_settings().storage_backend})")
    return _pipeline


def reset_pipeline() -> None:
    global _pipeline
    _pipeline = None


def get_pipeline() -> SummaryPipeline:
    if _pipeline is None:
        raise RuntimeError("Summary pipeline not initialized")
    return _pipeline


async def record_turn(
    session_id: str,
    message_id: str,
    role: str,
    text: Optional[str],
    ts: int
) -> bool:
    """Append a turn to the transcript"""
    return await get_pipeline().transcript.append_turn(session_id, message_id, role, text, ts)


async def on_assistant_turn(
    session_id: str,
    last_known_version: Optional[int] = None
) -> CadenceVerdict:
    """Cadence signal for a recorded assistant turn"""
    return await get_pipeline().tracker.on_assistant_turn(session_id, last_known_version)


async def maybe_regenerate(
    session_id: str,
    verdict: CadenceVerdict,
    client_turns: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None
) -> GenerationResult:
    return await get_pipeline().orchestrator.maybe_regenerate(
        session_id, verdict, client_turns, request_id
    )


async def regenerate_safely(
    session_id: str,
    verdict: CadenceVerdict,
    client_turns: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None
) -> Optional[GenerationResult]:
    """Run a round in the background; failures are logged, never raised"""
    return await get_pipeline().orchestrator.regenerate_safely(
        session_id, verdict, client_turns, request_id
    )


async def regenerate_now(
    session_id: str,
    client_turns: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None
) -> Optional[GenerationResult]:
    """Manual regeneration; returns None when another task holds the lock"""
    pipeline = get_pipeline()
    if not await pipeline.tracker.try_acquire_lock(session_id):
        return None
    return await pipeline.orchestrator.run_locked(session_id, "manual", client_turns, request_id)


async def release_lock(session_id: str) -> bool:
    return await get_pipeline().tracker.release_lock(session_id)


async def get_latest_summary(session_id: str) -> Optional[SummaryRow]:
    return await get_pipeline().summaries.get_latest(session_id)


async def get_cadence_state(session_id: str) -> CadenceStateView:
    return await get_pipeline().tracker.get_state(session_id)

from fastapi import FastAPI, HTTPException, BackgroundTasks, Header
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from typing import Optional

from .models import (
    InteractionRequest,
    InteractionResponse,
    AssistantTurnRequest,
    CadenceVerdict,
    CadenceStateView,
    SessionRequest,
    RegenerateRequest,
    ReleaseLockResponse,
    GenerationResult,
    SummaryRow,
)
from .config import get_settings
from .db import Database
from .errors import CadenceError, GeneratorFailure
from .ingestion import record_interaction
from .migrate import run_migrations
from . import pipeline

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
db = Database()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown"""
    # Startup
    settings = get_settings()
    logger.info(f"Starting Summary Cadence API (backend={settings.storage_backend})")
    try:
        if settings.use_memory_backend:
            pipeline.init_pipeline()
        else:
            db.settings = settings
            if db.pool is not None:
                await db.close()
            await db.get_pool()
            logger.info("Database connection pool initialized")

            await run_migrations(db)
            logger.info("Migrations completed")

            pipeline.init_pipeline(db)
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down Summary Cadence API")
    pipeline.reset_pipeline()
    await db.close()


# Create FastAPI app with lifespan
app = FastAPI(
    title="Summary Cadence API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "summary-cadence",
        "version": "1.0.0"
    }


@app.post("/interactions", response_model=InteractionResponse)
async def interactions(
    request: InteractionRequest,
    background_tasks: BackgroundTasks,
    x_request_id: Optional[str] = Header(default=None)
):
    """
    Record a conversation turn.

    Assistant turns advance the session's summary cadence and, when due,
    schedule a regeneration round.
    """
    try:
        return await record_interaction(request, background_tasks, request_id=x_request_id)
    except CadenceError as e:
        logger.error(f"Interaction endpoint error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/session-summary/assistant-turn", response_model=CadenceVerdict)
async def assistant_turn(request: AssistantTurnRequest):
    """Cadence signal only; the caller runs generation when dueNow and locked."""
    try:
        return await pipeline.on_assistant_turn(request.sessionId, request.lastKnownVersion)
    except CadenceError as e:
        logger.error(f"Assistant turn endpoint error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/session-summary", response_model=SummaryRow)
async def session_summary(sessionId: str):
    """Latest rolling summary for a session"""
    if not sessionId:
        raise HTTPException(status_code=400, detail="sessionId is required")
    try:
        row = await pipeline.get_latest_summary(sessionId)
    except CadenceError as e:
        logger.error(f"Session summary endpoint error: {e}")
        raise HTTPException(status_code=500, detail="Summary lookup failed")
    if row is None:
        raise HTTPException(status_code=404, detail="No summary for session")
    return row


@app.get("/session-summary/state", response_model=CadenceStateView)
async def session_summary_state(sessionId: str):
    """Cadence counters and lock for a session"""
    try:
        return await pipeline.get_cadence_state(sessionId)
    except CadenceError as e:
        logger.error(f"Summary state endpoint error: {e}")
        raise HTTPException(status_code=500, detail="Summary state lookup failed")


@app.post("/session-summary/release-lock", response_model=ReleaseLockResponse)
async def release_summary_lock(request: SessionRequest):
    try:
        ok = await pipeline.release_lock(request.sessionId)
    except CadenceError as e:
        logger.error(f"Release lock endpoint error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if not ok:
        raise HTTPException(status_code=404, detail="No cadence state for session")
    return ReleaseLockResponse(ok=True)


@app.post("/session-summary/regenerate", response_model=GenerationResult)
async def regenerate_summary(
    request: RegenerateRequest,
    x_request_id: Optional[str] = Header(default=None)
):
    """Force a regeneration round outside the cadence"""
    try:
        result = await pipeline.regenerate_now(
            request.sessionId,
            request.recentMessages,
            request_id=x_request_id
        )
    except GeneratorFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    except CadenceError as e:
        logger.error(f"Regenerate endpoint error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if result is None:
        raise HTTPException(status_code=409, detail="Summary generation already in progress")
    return result

import asyncio
import os
import uuid

import pytest
import pytest_asyncio

from summary_cadence.cadence import CadenceTracker
from summary_cadence.cadence_store import PostgresCadenceStore
from summary_cadence.config import Settings, get_settings
from summary_cadence.db import Database
from summary_cadence.migrate import run_migrations
from summary_cadence.summaries import PostgresSummaryStore
from summary_cadence.transcript import PostgresTranscriptStore

pytestmark = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"),
    reason="DATABASE_URL not set; Postgres store tests need a live database",
)


@pytest_asyncio.fixture
async def db():
    get_settings.cache_clear()
    database = Database()
    await run_migrations(database)
    try:
        yield database
    finally:
        await database.close()


def _session_id() -> str:
    return f"test-{uuid.uuid4()}"


@pytest.mark.asyncio
async def test_concurrent_signals_lock_once(db):
    settings = Settings(storage_backend="postgres")
    tracker = CadenceTracker(PostgresCadenceStore(db), settings=settings)
    session_id = _session_id()
    for _ in range(3):
        await tracker.on_assistant_turn(session_id)

    verdicts = await asyncio.gather(*[tracker.on_assistant_turn(session_id) for _ in range(4)])

    assert sorted(v.assistantMsgSince for v in verdicts) == [4, 5, 6, 7]
    assert sum(1 for v in verdicts if v.locked) == 1

    assert await tracker.on_generated(session_id, new_version=1, generated_at=1) is True
    state = await tracker.get_state(session_id)
    assert state.assistantMsgSince == 0
    assert state.locked is False


@pytest.mark.asyncio
async def test_release_lock_on_missing_session(db):
    tracker = CadenceTracker(PostgresCadenceStore(db), settings=Settings(storage_backend="postgres"))
    session_id = _session_id()
    assert await tracker.release_lock(session_id) is False
    assert await tracker.store.get(session_id) is None


@pytest.mark.asyncio
async def test_summary_versions_and_retention(db):
    store = PostgresSummaryStore(db, retain=2)
    session_id = _session_id()

    for i in range(1, 4):
        inserted = await store.insert(session_id, f"text {i}", 1000 + i, {"provider": "stub", "tokenBudget": 600})
        assert inserted.version == i

    latest = await store.get_latest(session_id)
    assert latest.text == "text 3"
    assert latest.lastMessageTs == 1003
    assert latest.meta["tokenBudget"] == 600
    assert await store.list_versions(session_id) == [3, 2]


@pytest.mark.asyncio
async def test_transcript_dedupes_by_message_id(db):
    store = PostgresTranscriptStore(db)
    session_id = _session_id()

    assert await store.append_turn(session_id, "m1", "user", "hi", 10) is True
    assert await store.append_turn(session_id, "m1", "user", "hi", 10) is False
    assert await store.append_turn(session_id, "m2", "assistant", "hello", 20) is True

    turns = await store.list_recent_turns(session_id, limit=1)
    assert [t.messageId for t in turns] == ["m2"]

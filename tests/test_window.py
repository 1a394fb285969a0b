import pytest

from summary_cadence.config import Settings
from summary_cadence.errors import TransientStoreError
from summary_cadence.models import Turn
from summary_cadence.transcript import MemoryTranscriptStore
from summary_cadence.window import (
    TurnWindowSelector,
    WindowContext,
    apply_policies,
    client_provided,
    normalize_client_turns,
)


class _FailingTranscript:
    async def list_recent_turns(self, session_id, limit=200):
        raise TransientStoreError("interactions read failed")


def _settings(**overrides):
    values = {"storage_backend": "memory", "summary_recent_cap": 40, "summary_fallback_tail": 8}
    values.update(overrides)
    return Settings(**values)


async def _seed(store, session_id, items):
    for i, (role, text, ts) in enumerate(items):
        await store.append_turn(session_id, f"m{i}", role, text, ts)


@pytest.mark.asyncio
async def test_only_turns_after_cutoff_are_selected():
    store = MemoryTranscriptStore()
    await _seed(store, "s1", [("user", f"t{ts}", ts) for ts in range(1, 6)])
    selector = TurnWindowSelector(store, settings=_settings())

    window = await selector.select_window("s1", cutoff_ts=3)
    assert [m.content for m in window] == ["t4", "t5"]


@pytest.mark.asyncio
async def test_recent_window_is_capped_to_newest_turns():
    store = MemoryTranscriptStore()
    await _seed(store, "s1", [("assistant", f"m{i}", 100 + i) for i in range(50)])
    selector = TurnWindowSelector(store, settings=_settings())

    window = await selector.select_window("s1", cutoff_ts=0)
    assert len(window) == 40
    assert window[0].content == "m10"
    assert window[-1].content == "m49"


@pytest.mark.asyncio
async def test_roles_are_coerced_and_blank_turns_dropped():
    store = MemoryTranscriptStore()
    await _seed(store, "s1", [
        ("system", "be brief", 1),
        ("assistant", "   ", 2),
        ("assistant", "sure", 3),
        ("user", None, 4),
    ])
    selector = TurnWindowSelector(store, settings=_settings())

    window = await selector.select_window("s1", cutoff_ts=0)
    assert [(m.role, m.content) for m in window] == [("user", "be brief"), ("assistant", "sure")]


@pytest.mark.asyncio
async def test_client_turns_used_when_nothing_new():
    store = MemoryTranscriptStore()
    await _seed(store, "s1", [("user", "old", 1)])
    selector = TurnWindowSelector(store, settings=_settings())

    window = await selector.select_window(
        "s1",
        cutoff_ts=10,
        client_turns=[{"role": "assistant", "content": "a"}, {"role": "tool", "text": "b"}],
    )
    assert [(m.role, m.content) for m in window] == [("assistant", "a"), ("user", "b")]


@pytest.mark.asyncio
async def test_raw_tail_fallback_when_no_fresh_or_client_turns():
    store = MemoryTranscriptStore()
    await _seed(store, "s1", [("user", f"old{i}", i) for i in range(1, 13)])
    selector = TurnWindowSelector(store, settings=_settings())

    window = await selector.select_window("s1", cutoff_ts=100)
    assert [m.content for m in window] == [f"old{i}" for i in range(5, 13)]


@pytest.mark.asyncio
async def test_empty_transcript_yields_empty_window():
    selector = TurnWindowSelector(MemoryTranscriptStore(), settings=_settings())
    assert await selector.select_window("nobody", cutoff_ts=0) == []


@pytest.mark.asyncio
async def test_fetch_failure_degrades_to_client_turns():
    selector = TurnWindowSelector(_FailingTranscript(), settings=_settings())

    window = await selector.select_window("s1", cutoff_ts=0, client_turns=[{"role": "user", "content": "hi"}])
    assert [m.content for m in window] == ["hi"]
    assert await selector.select_window("s1", cutoff_ts=0) == []


def test_custom_policy_chain():
    ctx = WindowContext(
        cutoff_ts=0,
        fetched=[Turn(sessionId="s1", role="user", text="stored", ts=5)],
        client_turns=[{"role": "assistant", "content": "supplied"}],
    )
    assert [m.content for m in apply_policies(ctx, (client_provided,))] == ["supplied"]
    assert [m.content for m in apply_policies(ctx)] == ["stored"]


def test_normalize_client_turns_skips_non_dicts():
    assert normalize_client_turns(["x", None, {"role": "user", "content": ""}]) == []

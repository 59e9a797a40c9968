"""Tests for the reflection engine: cycle, persistence and read contract."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from reflection_engine.config import load_config
from reflection_engine.core.engine import ReflectionEngine
from reflection_engine.errors import UpstreamUnavailable
from reflection_engine.models import CritiqueRecord, EventRecord
from reflection_engine.storage.event_store import SQLiteEventStore

USER_KEY = "npub1userkey0000000000000000000000000abcd"
CRITIQUE_JSON = json.dumps({
    "strengths": ["Warm greetings"],
    "weaknesses": ["Replies run long"],
    "recommendations": ["Trim filler"],
    "patterns": ["Opens with a question"],
    "exampleGoodReply": "thanks! what stood out?",
})


class FakeGenerate:
    """Records prompts and returns canned responses."""

    def __init__(self, response=CRITIQUE_JSON, delay=0.0, error=None):
        self.response = response
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []
        self.calls: list[dict] = []

    async def __call__(self, tier, prompt, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        self.calls.append({"tier": tier, "temperature": temperature, "max_tokens": max_tokens})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


class UnavailableStore:
    async def get_records(self, table, scope=None, count=100):
        raise UpstreamUnavailable("store offline")

    async def get_record_by_id(self, record_id):
        raise UpstreamUnavailable("store offline")

    async def append_record(self, record, table="messages"):
        raise UpstreamUnavailable("store offline")


@pytest_asyncio.fixture
async def store(tmp_path):
    s = SQLiteEventStore(tmp_path / "events.db")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def config():
    return load_config({})


async def _seed_interaction(store, base_ms=None):
    base_ms = base_ms or int(datetime.now(timezone.utc).timestamp() * 1000) - 60_000
    await store.append_record(EventRecord(
        id="p1", room_ref="room-1", created_at=base_ms, text="hey, loved the last piece",
        source="nostr", signature=USER_KEY,
    ))
    await store.append_record(EventRecord(
        id="r1", room_ref="room-1", created_at=base_ms + 1_000, text="thanks! what stood out?",
        source="nostr", in_reply_to="p1",
    ))


async def _append_reflection(store, config, generated_at, **critique):
    await store.append_record(EventRecord(
        room_ref=config["reflection_room"],
        type=config["reflection_type"],
        data={
            "generated_at": generated_at.isoformat(),
            "interactions_analyzed": 5,
            "analysis": critique,
        },
    ))


# ── Cycle ──

@pytest.mark.asyncio
async def test_cycle_produces_and_persists_critique(store, config):
    await _seed_interaction(store)
    generate = FakeGenerate()
    engine = ReflectionEngine(store, generate=generate, config=config)

    critique = await engine.analyze_interaction_quality()

    assert critique is not None
    assert critique.strengths == ["Warm greetings"]
    assert critique.generated_at is not None
    assert engine.last_analysis is critique
    assert "hey, loved the last piece" in generate.prompts[0]
    assert generate.calls[0] == {
        "tier": config["llm_tier"],
        "temperature": config["llm_temperature"],
        "max_tokens": config["llm_max_tokens"],
    }

    stored = await store.get_records("messages", scope=config["reflection_room"])
    assert len(stored) == 1
    data = stored[0].data
    assert stored[0].type == "self_reflection"
    assert data["interactions_analyzed"] == 1
    assert data["analysis"]["weaknesses"] == ["Replies run long"]
    assert data["raw_output"] == CRITIQUE_JSON
    assert data["context"]["interactions"][0]["metadata"]["reply_id"] == "r1"


@pytest.mark.asyncio
async def test_second_cycle_sees_previous_reflection(store, config):
    await _seed_interaction(store)
    generate = FakeGenerate()
    engine = ReflectionEngine(store, generate=generate, config=config)

    await engine.analyze_interaction_quality()
    await engine.analyze_interaction_quality()

    assert "RECENT SELF-REFLECTION INSIGHTS" not in generate.prompts[0]
    assert "RECENT SELF-REFLECTION INSIGHTS" in generate.prompts[1]
    assert "Replies run long" in generate.prompts[1]


@pytest.mark.asyncio
async def test_timeout_yields_no_critique(store, config):
    await _seed_interaction(store)
    config["llm_timeout_seconds"] = 0.01
    engine = ReflectionEngine(store, generate=FakeGenerate(delay=1.0), config=config)

    assert await engine.analyze_interaction_quality() is None
    assert await store.get_records("messages", scope=config["reflection_room"]) == []


@pytest.mark.asyncio
async def test_generation_failure_yields_no_critique(store, config):
    await _seed_interaction(store)
    engine = ReflectionEngine(
        store, generate=FakeGenerate(error=UpstreamUnavailable("model down")), config=config,
    )
    assert await engine.analyze_interaction_quality() is None


@pytest.mark.asyncio
async def test_empty_response_yields_no_critique(store, config):
    await _seed_interaction(store)
    engine = ReflectionEngine(store, generate=FakeGenerate(response="   "), config=config)
    assert await engine.analyze_interaction_quality() is None


@pytest.mark.asyncio
async def test_unusable_response_is_not_stored(store, config):
    await _seed_interaction(store)
    engine = ReflectionEngine(
        store, generate=FakeGenerate(response='{"notes": "nothing to say"}'), config=config,
    )
    assert await engine.analyze_interaction_quality() is None
    assert engine.last_analysis is None
    assert await store.get_records("messages", scope=config["reflection_room"]) == []


@pytest.mark.asyncio
async def test_store_unavailable_yields_no_critique(config):
    generate = FakeGenerate()
    engine = ReflectionEngine(UnavailableStore(), generate=generate, config=config)
    assert await engine.analyze_interaction_quality() is None
    assert generate.prompts == []


@pytest.mark.asyncio
async def test_no_interactions_skips_generation(store, config):
    generate = FakeGenerate()
    engine = ReflectionEngine(store, generate=generate, config=config)
    assert await engine.analyze_interaction_quality() is None
    assert generate.prompts == []


@pytest.mark.asyncio
async def test_disabled_engine_does_nothing(store):
    await _seed_interaction(store)
    generate = FakeGenerate()
    engine = ReflectionEngine(store, generate=generate, config=load_config({"REFLECTION_ENABLE": "false"}))

    assert await engine.analyze_interaction_quality() is None
    assert await engine.get_history() == []
    assert await engine.get_latest_summary() is None
    assert generate.prompts == []


# ── Read contract ──

@pytest.mark.asyncio
async def test_history_respects_max_age_and_validity(store, config):
    now = datetime.now(timezone.utc)
    await _append_reflection(store, config, now - timedelta(hours=2),
                             strengths=["fresh strength"], weaknesses=["fresh weakness"])
    await _append_reflection(store, config, now - timedelta(days=30),
                             strengths=["stale strength"], weaknesses=["stale weakness"])
    await _append_reflection(store, config, now - timedelta(hours=1), patterns=["only patterns"])

    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)
    history = await engine.get_history(limit=5, max_age_hours=24)

    assert [h.strengths for h in history] == [["fresh strength"]]


@pytest.mark.asyncio
async def test_latest_summary_is_cached(store, config):
    now = datetime.now(timezone.utc)
    await _append_reflection(store, config, now, strengths=["first"], weaknesses=["first weakness"])
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)

    first = await engine.get_latest_summary()
    await _append_reflection(store, config, now + timedelta(seconds=1),
                             strengths=["second"], weaknesses=["second weakness"])

    assert (await engine.get_latest_summary()).strengths == first.strengths
    assert (await engine.get_latest_summary(cache_seconds=0)).strengths in (["first"], ["second"])


@pytest.mark.asyncio
async def test_latest_summary_falls_back_to_last_analysis(store, config):
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)
    engine.last_analysis = CritiqueRecord(
        strengths=["kept in memory"], weaknesses=["also kept"], recommendations=["not carried"],
        generated_at="2026-01-01T00:00:00+00:00",
    )
    summary = await engine.get_latest_summary(cache_seconds=0)
    assert summary.strengths == ["kept in memory"]
    assert summary.weaknesses == ["also kept"]
    assert summary.recommendations == []


@pytest.mark.asyncio
async def test_summary_truncates_items(store, config):
    now = datetime.now(timezone.utc)
    await _append_reflection(store, config, now,
                             strengths=[f"strength number {i}" for i in range(6)],
                             weaknesses=["w" * 500])
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)

    summary = await engine.get_latest_summary(cache_seconds=0)
    assert len(summary.strengths) == config["summary_item_limit"]
    assert len(summary.weaknesses[0]) == config["summary_item_chars"]


@pytest.mark.asyncio
async def test_long_term_history_window(store, config):
    now = datetime.now(timezone.utc)
    for days in (1, 40, 89, 120):
        await _append_reflection(store, config, now - timedelta(days=days),
                                 strengths=[f"s{days}x"], weaknesses=[f"w{days}x"])
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)

    entries = await engine.get_long_term_history(limit=50, max_age_days=90, now=now)
    assert sorted(e.critique.strengths[0] for e in entries) == ["s1x", "s40x", "s89x"]
    assert all(e.interactions_analyzed == 5 for e in entries)


@pytest.mark.asyncio
async def test_longitudinal_summary_from_store(store, config):
    now = datetime.now(timezone.utc)
    for days in (2, 10, 60):
        await _append_reflection(store, config, now - timedelta(days=days),
                                 strengths=["warm tone"], weaknesses=["verbose replies"])
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)

    summary = await engine.get_longitudinal_summary(now=now)
    assert summary.timespan.total == 3
    issue = summary.recurring_issues[0]
    assert issue.issue == "verbose replies"
    assert issue.occurrences == 3
    assert len(issue.periods_covered) == 3
    assert summary.persistent_strengths[0].consistency == "stable"


@pytest.mark.asyncio
async def test_longitudinal_summary_needs_two_reflections(store, config):
    now = datetime.now(timezone.utc)
    await _append_reflection(store, config, now, strengths=["a one"], weaknesses=["b one"])
    engine = ReflectionEngine(store, generate=FakeGenerate(), config=config)
    assert await engine.get_longitudinal_summary(now=now) is None

"""Tests for the SQLite event store."""

import pytest
import pytest_asyncio

from reflection_engine.errors import UpstreamUnavailable
from reflection_engine.models import EventRecord
from reflection_engine.storage.event_store import SQLiteEventStore


@pytest_asyncio.fixture
async def store(tmp_path):
    s = SQLiteEventStore(tmp_path / "test.db")
    await s.initialize()
    yield s
    await s.close()


def _make_record(**kwargs) -> EventRecord:
    defaults = dict(
        id="rec-1",
        author_ref="npub1author",
        room_ref="room-1",
        created_at=1_760_000_000_000,
        text="Test record content",
        type="message",
        source="nostr",
        in_reply_to=None,
        signature="npub1author",
        data={"tags": ["p", "e"]},
    )
    defaults.update(kwargs)
    return EventRecord(**defaults)


@pytest.mark.asyncio
async def test_append_and_get_record(store):
    await store.append_record(_make_record())

    result = await store.get_record_by_id("rec-1")
    assert result is not None
    assert result.id == "rec-1"
    assert result.text == "Test record content"
    assert result.room_ref == "room-1"
    assert result.signature == "npub1author"
    assert result.created_at == 1_760_000_000_000
    assert result.data == {"tags": ["p", "e"]}


@pytest.mark.asyncio
async def test_get_nonexistent_record(store):
    assert await store.get_record_by_id("nonexistent") is None


@pytest.mark.asyncio
async def test_get_records_newest_first(store):
    for i in range(5):
        await store.append_record(_make_record(id=f"rec-{i}", created_at=1_000 + i))

    records = await store.get_records("messages", count=3)
    assert [r.id for r in records] == ["rec-4", "rec-3", "rec-2"]


@pytest.mark.asyncio
async def test_get_records_scoped_to_room(store):
    await store.append_record(_make_record(id="a", room_ref="room-1", created_at=1))
    await store.append_record(_make_record(id="b", room_ref="self-reflection", created_at=2))
    await store.append_record(_make_record(id="c", room_ref="room-1", created_at=3))

    records = await store.get_records("messages", scope="room-1")
    assert [r.id for r in records] == ["c", "a"]


@pytest.mark.asyncio
async def test_tables_are_separate(store):
    await store.append_record(_make_record(id="m"), table="messages")
    await store.append_record(_make_record(id="o"), table="other")

    assert [r.id for r in await store.get_records("messages")] == ["m"]
    assert [r.id for r in await store.get_records("other")] == ["o"]


@pytest.mark.asyncio
async def test_duplicate_id_raises_upstream_unavailable(store):
    await store.append_record(_make_record())
    with pytest.raises(UpstreamUnavailable):
        await store.append_record(_make_record())


@pytest.mark.asyncio
async def test_reply_linkage_round_trips(store):
    await store.append_record(_make_record(id="parent"))
    await store.append_record(_make_record(id="reply", in_reply_to="parent", signature=None))

    reply = await store.get_record_by_id("reply")
    assert reply.in_reply_to == "parent"
    assert reply.signature is None

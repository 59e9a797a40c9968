"""Event store adapter: interaction records and persisted reflections.

The reflection engine only depends on the ``EventStore`` protocol. The
SQLite implementation keeps every record as one row with its content
serialized to JSON; records are never updated in place.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

import aiosqlite

from reflection_engine.config import DB_PATH
from reflection_engine.errors import UpstreamUnavailable
from reflection_engine.models import EventRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id          TEXT PRIMARY KEY,
    table_name  TEXT NOT NULL,
    room_ref    TEXT,
    author_ref  TEXT,
    created_at  INTEGER,
    content     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_table ON records(table_name, created_at);
CREATE INDEX IF NOT EXISTS idx_records_room ON records(room_ref, created_at);
"""


class EventStore(Protocol):
    async def get_records(
        self, table: str, scope: str | None = None, count: int = 100,
    ) -> list[EventRecord]: ...

    async def get_record_by_id(self, record_id: str) -> EventRecord | None: ...

    async def append_record(self, record: EventRecord, table: str = "messages") -> str: ...


class SQLiteEventStore:
    """Async SQLite event store."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "SQLiteEventStore not initialized — call initialize() first"
        return self._db

    async def get_records(
        self, table: str, scope: str | None = None, count: int = 100,
    ) -> list[EventRecord]:
        """Return up to ``count`` records of a table, newest first.

        ``scope`` restricts the result to a single room.
        """
        if scope:
            sql = ("SELECT * FROM records WHERE table_name = ? AND room_ref = ? "
                   "ORDER BY created_at DESC LIMIT ?")
            params: tuple = (table, scope, count)
        else:
            sql = "SELECT * FROM records WHERE table_name = ? ORDER BY created_at DESC LIMIT ?"
            params = (table, count)

        try:
            async with self.db.execute(sql, params) as cur:
                return [_row_to_record(dict(row)) async for row in cur]
        except aiosqlite.Error as exc:
            raise UpstreamUnavailable(f"failed to load records from {table}") from exc

    async def get_record_by_id(self, record_id: str) -> EventRecord | None:
        try:
            async with self.db.execute(
                "SELECT * FROM records WHERE id = ?", (record_id,)
            ) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as exc:
            raise UpstreamUnavailable(f"failed to load record {record_id}") from exc
        return _row_to_record(dict(row)) if row else None

    async def append_record(self, record: EventRecord, table: str = "messages") -> str:
        content = {
            "text": record.text,
            "type": record.type,
            "source": record.source,
            "in_reply_to": record.in_reply_to,
            "signature": record.signature,
            "data": record.data,
        }
        try:
            await self.db.execute(
                "INSERT INTO records (id, table_name, room_ref, author_ref, created_at, content) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record.id, table, record.room_ref, record.author_ref, record.created_at,
                 json.dumps(content, ensure_ascii=False, default=str)),
            )
            await self.db.commit()
        except aiosqlite.Error as exc:
            raise UpstreamUnavailable(f"failed to append record {record.id}") from exc
        logger.debug("Appended record %s to %s", record.id, table)
        return record.id


def _row_to_record(row: dict) -> EventRecord:
    """Convert a SQLite row dict to an EventRecord."""
    content = json.loads(row["content"]) if row.get("content") else {}
    return EventRecord(
        id=row["id"],
        author_ref=row.get("author_ref"),
        room_ref=row.get("room_ref"),
        created_at=row.get("created_at"),
        text=content.get("text") or "",
        type=content.get("type"),
        source=content.get("source"),
        in_reply_to=content.get("in_reply_to"),
        signature=content.get("signature"),
        data=content.get("data") or {},
    )

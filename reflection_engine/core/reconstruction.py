"""Rebuild conversation windows around the agent's past replies.

The interaction log is flat: replies point at their parent through
``in_reply_to`` and nothing else ties a thread together. Every call rebuilds
the id and room indexes from the supplied records, walks the agent's replies
newest first, and assembles for each one the surrounding conversation, the
follow-up it received and any other signals logged around the same time.

Only parents (and appreciation targets) missing from the supplied records are
fetched from the store, one record at a time. The caller's list is never
modified.
"""

from __future__ import annotations

import logging
from bisect import insort
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from reflection_engine.config import REFLECTION_CONFIG
from reflection_engine.core.text import mask_author_id, to_iso, truncate
from reflection_engine.errors import UpstreamUnavailable
from reflection_engine.models import (
    EventRecord,
    FollowupTurn,
    InteractionMetadata,
    InteractionRecord,
    Role,
    Turn,
)
from reflection_engine.storage.event_store import EventStore

logger = logging.getLogger(__name__)

_MINUTE_MS = 60 * 1000


def _ts(record: EventRecord) -> int:
    return record.created_at or 0


def record_text(record: EventRecord) -> str:
    return str(record.text or record.data.get("summary") or record.data.get("text") or "").strip()


def infer_role(
    record: EventRecord,
    reply_id: str | None = None,
    agent_id: str | None = None,
    reply_source: str = "nostr",
) -> Role:
    """Classify who authored a record.

    A record is the agent's when it is the reply under review, carries the
    agent's own signature, or is an unsigned platform message with text.
    Any other signature belongs to a counterpart.
    """
    if reply_id and record.id == reply_id:
        return Role.AGENT
    if agent_id and record.signature == agent_id:
        return Role.AGENT
    if record.signature:
        return Role.COUNTERPART
    if record.source == reply_source and record.text:
        return Role.AGENT
    if record.source == reply_source and record.data.get("trigger_event"):
        return Role.SYSTEM
    return Role.UNKNOWN


@dataclass
class TimeWindow:
    start: int
    end: int

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp <= self.end


class InteractionReconstructor:
    """Builds InteractionRecords from a snapshot of the event log."""

    def __init__(
        self,
        store: EventStore | None = None,
        agent_id: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.agent_id = agent_id
        self.config = config or REFLECTION_CONFIG

    async def reconstruct(
        self, records: list[EventRecord], limit: int | None = None,
    ) -> tuple[list[InteractionRecord], list[str]]:
        """Return up to ``limit`` interactions (newest first) and the global signals."""
        limit = limit or self.config["max_interactions"]
        ordered = sorted((r for r in records if r is not None), key=_ts)

        by_id: dict[str, EventRecord] = {}
        by_room: dict[str, list[EventRecord]] = defaultdict(list)
        for record in ordered:
            by_id[record.id] = record
            if record.room_ref:
                by_room[record.room_ref].append(record)

        interactions: list[InteractionRecord] = []
        seen_replies: set[str] = set()

        for reply in reversed(ordered):
            if len(interactions) >= limit:
                break
            if not self._is_agent_reply(reply) or reply.id in seen_replies:
                continue
            seen_replies.add(reply.id)

            parent = await self._resolve_parent(reply.in_reply_to, by_id, by_room)
            if parent is None:
                continue

            user_text = record_text(parent)
            reply_text = reply.text.strip()
            if not user_text or not reply_text:
                continue

            conversation = self.build_conversation_window(by_room.get(reply.room_ref, []), reply, parent)
            feedback = self.collect_feedback(conversation, reply.id)
            window = self.derive_time_window(conversation, reply.created_at, parent.created_at)
            signals = await self.collect_signals(ordered, reply, window, by_id)

            interactions.append(InteractionRecord(
                user_message=truncate(user_text, self.config["turn_text_chars"]),
                agent_reply=truncate(reply_text, self.config["turn_text_chars"]),
                conversation=conversation,
                feedback=feedback,
                signals=signals,
                metadata=InteractionMetadata(
                    masked_author_id=mask_author_id(parent.signature),
                    reply_id=reply.id,
                    room_ref=reply.room_ref,
                    created_at=reply.created_at,
                    participants=list(dict.fromkeys(t.author for t in conversation if t.author)),
                ),
            ))

        logger.debug("Reconstructed %d interactions from %d records", len(interactions), len(ordered))
        return interactions, self.collect_global_signals(ordered)

    def _is_agent_reply(self, record: EventRecord) -> bool:
        return bool(
            record.in_reply_to
            and isinstance(record.text, str)
            and record.text.strip()
            and record.source == self.config["reply_source"]
            and infer_role(record, agent_id=self.agent_id,
                           reply_source=self.config["reply_source"]) is Role.AGENT
        )

    async def _resolve_parent(
        self,
        parent_id: str | None,
        by_id: dict[str, EventRecord],
        by_room: dict[str, list[EventRecord]],
    ) -> EventRecord | None:
        if not parent_id:
            return None
        parent = by_id.get(parent_id)
        if parent is not None or self.store is None:
            return parent

        try:
            parent = await self.store.get_record_by_id(parent_id)
        except UpstreamUnavailable:
            logger.debug("Failed to fetch parent record %s", parent_id[:8])
            return None
        if parent is None:
            return None

        by_id[parent.id] = parent
        if parent.room_ref:
            insort(by_room[parent.room_ref], parent, key=_ts)
        return parent

    def build_conversation_window(
        self, room_records: list[EventRecord], reply: EventRecord, parent: EventRecord | None,
    ) -> list[Turn]:
        """Slice the reply's room around the reply, always keeping the parent.

        Roomless replies get a window of just the parent and the reply.
        """
        ordered = list(room_records)
        if not any(r.id == reply.id for r in ordered):
            insort(ordered, reply, key=_ts)
        reply_index = next(i for i, r in enumerate(ordered) if r.id == reply.id)

        start = max(0, reply_index - self.config["convo_window_before"])
        end = min(len(ordered), reply_index + self.config["convo_window_after"] + 1)
        window = ordered[start:end]
        if parent is not None and not any(r.id == parent.id for r in window):
            window.insert(0, parent)

        return [self._to_turn(record, reply) for record in window]

    def _to_turn(self, record: EventRecord, reply: EventRecord) -> Turn:
        role = infer_role(record, reply.id, self.agent_id, self.config["reply_source"])
        if role is Role.AGENT:
            author = "you"
        elif record.signature:
            author = mask_author_id(record.signature)
        elif record.author_ref:
            author = mask_author_id(record.author_ref)
        else:
            author = "unknown"
        return Turn(
            id=record.id,
            role=role,
            author=author,
            text=truncate(record_text(record), self.config["turn_text_chars"]),
            timestamp=record.created_at,
            source_type=record.type_label,
            is_reply=record.id == reply.id,
        )

    def collect_feedback(self, conversation: list[Turn], reply_id: str) -> list[FollowupTurn]:
        """Counterpart turns that came after the reply.

        Turns whose author cannot be inferred are left out along with agent and
        system turns.
        """
        reply_index = next(
            (i for i, turn in enumerate(conversation) if turn.id == reply_id or turn.is_reply), None,
        )
        if reply_index is None:
            return []

        followups = [
            FollowupTurn(author=turn.author, summary=turn.text, timestamp=turn.timestamp)
            for turn in conversation[reply_index + 1:]
            if turn.role is Role.COUNTERPART and turn.text
        ]
        return followups[: self.config["max_feedback_turns"]]

    def derive_time_window(
        self, conversation: list[Turn], reply_at: int | None, parent_at: int | None,
    ) -> TimeWindow | None:
        timestamps = [t.timestamp for t in conversation if t.timestamp is not None]
        timestamps += [ts for ts in (reply_at, parent_at) if ts is not None]
        if not timestamps:
            return None
        padding = self.config["signal_window_padding_minutes"] * _MINUTE_MS
        return TimeWindow(start=min(timestamps) - padding, end=max(timestamps) + padding)

    async def collect_signals(
        self,
        records: list[EventRecord],
        reply: EventRecord,
        window: TimeWindow | None,
        by_id: dict[str, EventRecord] | None = None,
    ) -> list[str]:
        """Other typed records logged around the interaction."""
        if window is None:
            fallback = self.config["signal_fallback_window_minutes"] * _MINUTE_MS
            window = TimeWindow(start=_ts(reply) - fallback, end=_ts(reply) + fallback)

        excluded = set(self.config["excluded_signal_types"])
        signals: list[str] = []
        seen: set[tuple[str, str | None]] = set()

        for record in records:
            if record.id == reply.id or not window.contains(_ts(record)):
                continue
            type_label = record.type_label
            if not type_label or type_label in excluded:
                continue
            key = (type_label, record.room_ref)
            if key in seen:
                continue
            seen.add(key)

            signal = None
            if (type_label == self.config["appreciation_type"]
                    and self.config["appreciation_correlation_enabled"]):
                signal = await self._correlate_appreciation(record, by_id or {})
            if not signal:
                signal = f"{type_label}: {truncate(record_text(record), 200)}".strip()

            signals.append(signal)
            if len(signals) >= self.config["max_signals_per_interaction"]:
                break

        return signals

    async def _correlate_appreciation(
        self, record: EventRecord, by_id: dict[str, EventRecord],
    ) -> str | None:
        """Point an appreciation signal back at the content it rewarded."""
        target_id = record.data.get("target_id")
        if not target_id:
            return None

        target = by_id.get(target_id)
        if target is None and self.store is not None:
            try:
                target = await self.store.get_record_by_id(target_id)
            except UpstreamUnavailable:
                logger.debug("Failed to fetch appreciation target %s", target_id)
                return None
        if target is None:
            return None

        target_text = record_text(target)
        if not target_text:
            return None
        return (f'{record.type_label} to "{truncate(target_text, 150)}": '
                f"{truncate(record.text, 100)}")

    def collect_global_signals(self, ordered: list[EventRecord]) -> list[str]:
        """Newest typed records across the log, one per (type, room)."""
        excluded = self.config["reflection_type"]
        signals: list[str] = []
        seen: set[tuple[str, str | None]] = set()

        for record in reversed(ordered):
            type_label = record.type_label
            if not type_label or type_label == excluded:
                continue
            key = (type_label, record.room_ref)
            if key in seen:
                continue
            seen.add(key)

            stamp = to_iso(record.created_at)
            label = f"{type_label} @ {stamp}" if stamp else type_label
            signals.append(f"{label}: {truncate(record_text(record), 160)}".strip())
            if len(signals) >= self.config["max_global_signals"]:
                break

        return signals

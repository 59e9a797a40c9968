"""Data models for the self-reflection engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    AGENT = "agent"
    COUNTERPART = "counterpart"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class PeriodBucket(str, Enum):
    """Age ranges used to group historical reflections, newest first."""
    RECENT = "recent"
    ONE_WEEK_AGO = "one_week_ago"
    ONE_MONTH_AGO = "one_month_ago"
    OLDER = "older"


# ── Event log ──

@dataclass
class EventRecord:
    """One entry of the interaction log, as supplied by the event store."""
    id: str = field(default_factory=_uuid)
    author_ref: str | None = None
    room_ref: str | None = None
    created_at: int | None = field(default_factory=_now_ms)  # epoch ms
    text: str = ""
    type: str | None = None
    source: str | None = None
    in_reply_to: str | None = None
    signature: str | None = None  # counterpart identity on inbound messages
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def type_label(self) -> str | None:
        return self.type or self.data.get("type")


# ── Reconstructed interactions ──

@dataclass(frozen=True)
class Turn:
    id: str | None
    role: Role
    author: str
    text: str
    timestamp: int | None = None
    source_type: str | None = None
    is_reply: bool = False


@dataclass(frozen=True)
class FollowupTurn:
    author: str
    summary: str
    timestamp: int | None = None


@dataclass
class InteractionMetadata:
    masked_author_id: str = "unknown"
    reply_id: str = ""
    room_ref: str | None = None
    created_at: int | None = None
    participants: list[str] = field(default_factory=list)


@dataclass
class InteractionRecord:
    user_message: str = ""
    agent_reply: str = ""
    conversation: list[Turn] = field(default_factory=list)
    feedback: list[FollowupTurn] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)
    metadata: InteractionMetadata = field(default_factory=InteractionMetadata)


# ── Critiques ──

@dataclass
class CritiqueRecord:
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    example_good_reply: str | None = None
    example_bad_reply: str | None = None
    regressions: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    narrative_summary: str | None = None
    key_learnings: list[str] = field(default_factory=list)
    suggested_phase: str | None = None
    generated_at: str | None = None  # ISO-8601


@dataclass(frozen=True)
class ReflectionEntry:
    """A persisted critique as read back from the reflection history."""
    critique: CritiqueRecord
    generated_at: datetime | None = None
    interactions_analyzed: int | None = None
    record_id: str | None = None


# ── Longitudinal aggregation ──

@dataclass
class OccurrenceTally:
    normalized_text: str
    original_text: str
    periods_covered: set[PeriodBucket] = field(default_factory=set)
    count: int = 0


@dataclass
class RecurringIssue:
    issue: str
    occurrences: int
    periods_covered: list[PeriodBucket]
    severity: str  # ongoing | resolved


@dataclass
class PersistentStrength:
    strength: str
    occurrences: int
    periods_covered: list[PeriodBucket]
    consistency: str  # stable | emerging


@dataclass
class EvolvingPattern:
    pattern: str
    occurrences: int
    periods_covered: list[PeriodBucket]


@dataclass
class EvolutionTrends:
    strengths_gained: list[str] = field(default_factory=list)
    weaknesses_resolved: list[str] = field(default_factory=list)
    new_challenges: list[str] = field(default_factory=list)
    stagnant_areas: list[str] = field(default_factory=list)


@dataclass
class Timespan:
    oldest: str | None = None
    newest: str | None = None
    total: int = 0


@dataclass
class LongitudinalSummary:
    timespan: Timespan = field(default_factory=Timespan)
    recurring_issues: list[RecurringIssue] = field(default_factory=list)
    persistent_strengths: list[PersistentStrength] = field(default_factory=list)
    evolving_patterns: list[EvolvingPattern] = field(default_factory=list)
    evolution_trends: EvolutionTrends = field(default_factory=EvolutionTrends)
    period_breakdown: dict[PeriodBucket, int] = field(default_factory=dict)

"""Longitudinal analysis over the reflection history.

Reflections are grouped into age buckets relative to ``now``, their items are
normalized and tallied, and the tallies are classified:

  - recurring issues: weaknesses seen in ≥2 buckets or ≥3 times
  - persistent strengths: strengths under the same rule
  - evolving patterns: patterns seen in ≥2 buckets
  - evolution trends: the recent bucket against everything older than a month

``aggregate`` is a pure function of its inputs; callers supply ``now``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from reflection_engine.config import REFLECTION_CONFIG
from reflection_engine.core.text import normalize_for_comparison
from reflection_engine.models import (
    EvolutionTrends,
    EvolvingPattern,
    LongitudinalSummary,
    OccurrenceTally,
    PeriodBucket,
    PersistentStrength,
    RecurringIssue,
    ReflectionEntry,
    Timespan,
)

logger = logging.getLogger(__name__)

_BUCKET_ORDER = list(PeriodBucket)


def assign_bucket(generated_at: datetime, now: datetime, config: dict[str, Any] | None = None) -> PeriodBucket:
    """Place a timestamp into its age bucket. Future timestamps count as recent."""
    cfg = config or REFLECTION_CONFIG
    age = now - generated_at
    if age <= timedelta(days=cfg["period_recent_days"]):
        return PeriodBucket.RECENT
    if age <= timedelta(days=cfg["period_one_week_ago_days"]):
        return PeriodBucket.ONE_WEEK_AGO
    if age <= timedelta(days=cfg["period_one_month_ago_days"]):
        return PeriodBucket.ONE_MONTH_AGO
    return PeriodBucket.OLDER


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def tally_items(
    bucketed: list[tuple[PeriodBucket, ReflectionEntry]], field_name: str,
) -> dict[str, OccurrenceTally]:
    """Count normalized items of one critique field, keyed in first-seen order."""
    tallies: dict[str, OccurrenceTally] = {}
    for bucket, entry in bucketed:
        for item in getattr(entry.critique, field_name) or []:
            key = normalize_for_comparison(item)
            if not key:
                continue
            tally = tallies.get(key)
            if tally is None:
                tally = tallies[key] = OccurrenceTally(normalized_text=key, original_text=item)
            tally.periods_covered.add(bucket)
            tally.count += 1
    return tallies


def _is_recurring(tally: OccurrenceTally, cfg: dict[str, Any]) -> bool:
    return (len(tally.periods_covered) >= cfg["recurring_min_periods"]
            or tally.count >= cfg["recurring_min_occurrences"])


def _ordered_periods(periods: set[PeriodBucket]) -> list[PeriodBucket]:
    return [bucket for bucket in _BUCKET_ORDER if bucket in periods]


def _top(items: list, n: int) -> list:
    # sorted() is stable, so equal counts keep first-seen order
    return sorted(items, key=lambda item: item.occurrences, reverse=True)[:n]


def _normalized_set(entries: Iterable[ReflectionEntry], field_name: str) -> dict[str, None]:
    keys: dict[str, None] = {}
    for entry in entries:
        for item in getattr(entry.critique, field_name) or []:
            key = normalize_for_comparison(item)
            if key:
                keys[key] = None
    return keys


def detect_evolution_trends(
    periods: dict[PeriodBucket, list[ReflectionEntry]], top_n: int = 3,
) -> EvolutionTrends:
    recent = periods[PeriodBucket.RECENT]
    older = periods[PeriodBucket.ONE_MONTH_AGO] + periods[PeriodBucket.OLDER]

    recent_strengths = _normalized_set(recent, "strengths")
    recent_weaknesses = _normalized_set(recent, "weaknesses")
    older_strengths = _normalized_set(older, "strengths")
    older_weaknesses = _normalized_set(older, "weaknesses")

    return EvolutionTrends(
        strengths_gained=[s for s in recent_strengths if s not in older_strengths][:top_n],
        weaknesses_resolved=[w for w in older_weaknesses if w not in recent_weaknesses][:top_n],
        new_challenges=[w for w in recent_weaknesses if w not in older_weaknesses][:top_n],
        stagnant_areas=[w for w in recent_weaknesses if w in older_weaknesses][:top_n],
    )


def aggregate(
    entries: Iterable[ReflectionEntry],
    now: datetime,
    config: dict[str, Any] | None = None,
) -> LongitudinalSummary | None:
    """Summarize how critique findings persist and change over time.

    Entries without a timestamp are ignored. Returns None when fewer than two
    timestamped entries remain.
    """
    cfg = config or REFLECTION_CONFIG
    now = _aware(now)
    usable = [entry for entry in entries if entry.generated_at is not None]
    if len(usable) < 2:
        logger.debug("Insufficient history for longitudinal analysis (%d entries)", len(usable))
        return None

    periods: dict[PeriodBucket, list[ReflectionEntry]] = {bucket: [] for bucket in _BUCKET_ORDER}
    for entry in usable:
        periods[assign_bucket(_aware(entry.generated_at), now, cfg)].append(entry)
    bucketed = [(bucket, entry) for bucket in _BUCKET_ORDER for entry in periods[bucket]]

    top_n = cfg["summary_top_n"]

    recurring_issues = [
        RecurringIssue(
            issue=tally.original_text,
            occurrences=tally.count,
            periods_covered=_ordered_periods(tally.periods_covered),
            severity="ongoing" if PeriodBucket.RECENT in tally.periods_covered else "resolved",
        )
        for tally in tally_items(bucketed, "weaknesses").values()
        if _is_recurring(tally, cfg)
    ]

    persistent_strengths = [
        PersistentStrength(
            strength=tally.original_text,
            occurrences=tally.count,
            periods_covered=_ordered_periods(tally.periods_covered),
            consistency=(
                "stable"
                if {PeriodBucket.RECENT, PeriodBucket.OLDER} <= tally.periods_covered
                else "emerging"
            ),
        )
        for tally in tally_items(bucketed, "strengths").values()
        if _is_recurring(tally, cfg)
    ]

    evolving_patterns = [
        EvolvingPattern(
            pattern=tally.original_text,
            occurrences=tally.count,
            periods_covered=_ordered_periods(tally.periods_covered),
        )
        for tally in tally_items(bucketed, "patterns").values()
        if len(tally.periods_covered) >= cfg["recurring_min_periods"]
    ]

    timestamps = [_aware(entry.generated_at) for entry in usable]
    return LongitudinalSummary(
        timespan=Timespan(
            oldest=min(timestamps).isoformat(),
            newest=max(timestamps).isoformat(),
            total=len(usable),
        ),
        recurring_issues=_top(recurring_issues, top_n),
        persistent_strengths=_top(persistent_strengths, top_n),
        evolving_patterns=evolving_patterns[:top_n],
        evolution_trends=detect_evolution_trends(periods, cfg["trend_top_n"]),
        period_breakdown={bucket: len(periods[bucket]) for bucket in _BUCKET_ORDER},
    )

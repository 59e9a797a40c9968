"""Reflection engine: runs self-reflection cycles and serves their results.

One cycle reconstructs recent interactions from the event log, asks the
generative model for a critique, extracts a CritiqueRecord from whatever comes
back and appends it to the reflection history. The read side serves the
latest critique (behind a short-lived cache), the recent history and the
longitudinal summary built from the long-term history.

Upstream failures never escape: a cycle that cannot reach the store or the
model logs the failure and produces no critique.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any

from reflection_engine.config import load_config
from reflection_engine.core.extraction import critique_from_mapping, extract_critique, is_valid_critique
from reflection_engine.core.formatting import (
    build_insights_summary,
    build_reflection_prompt,
    serialize_interaction,
    summarize_longitudinal,
)
from reflection_engine.core.longitudinal import aggregate
from reflection_engine.core.reconstruction import InteractionReconstructor
from reflection_engine.core.text import parse_iso, trim, truncate
from reflection_engine.errors import UpstreamUnavailable
from reflection_engine.llm.client import generate as llm_generate
from reflection_engine.models import (
    CritiqueRecord,
    EventRecord,
    InteractionRecord,
    LongitudinalSummary,
    ReflectionEntry,
)
from reflection_engine.storage.event_store import EventStore

logger = logging.getLogger(__name__)

GenerateFn = Callable[..., Awaitable[str]]


class ReflectionEngine:
    """Top-level orchestrator for self-reflection."""

    def __init__(
        self,
        store: EventStore,
        generate: GenerateFn | None = None,
        agent_id: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.generate = generate or llm_generate
        self.config = config or load_config()
        self.enabled = bool(self.config["enabled"])
        self.reconstructor = InteractionReconstructor(store, agent_id=agent_id, config=self.config)

        # Fallback when the store holds no readable reflection
        self.last_analysis: CritiqueRecord | None = None
        # (monotonic timestamp, summary)
        self._latest_cache: tuple[float, CritiqueRecord | None] | None = None

        if self.enabled:
            logger.info(
                "Self-reflection enabled (limit=%d, temperature=%s, max_tokens=%d)",
                self.config["max_interactions"], self.config["llm_temperature"],
                self.config["llm_max_tokens"],
            )
        else:
            logger.info("Self-reflection disabled via configuration")

    # ── Cycle ──

    async def analyze_interaction_quality(
        self,
        limit: int | None = None,
        history_limit: int | None = None,
        history_max_age_hours: float | None = None,
        enable_longitudinal: bool | None = None,
    ) -> CritiqueRecord | None:
        """Run one reflection cycle. Returns the critique, or None if none was produced."""
        if not self.enabled:
            return None
        cfg = self.config

        try:
            interactions, context_signals = await self.get_recent_interactions(limit)
        except UpstreamUnavailable:
            logger.warning("Event store unavailable, skipping reflection cycle", exc_info=True)
            return None
        if not interactions:
            logger.debug("No recent interactions available for analysis")
            return None

        previous = await self.get_history(
            limit=history_limit or cfg["history_limit"],
            max_age_hours=history_max_age_hours or cfg["history_max_age_hours"],
        )

        if enable_longitudinal is None:
            enable_longitudinal = cfg["longitudinal_enabled"]
        longitudinal = None
        if enable_longitudinal:
            longitudinal = await self.get_longitudinal_summary()
            if longitudinal:
                logger.debug(
                    "Longitudinal analysis: %d recurring issues, %d persistent strengths",
                    len(longitudinal.recurring_issues), len(longitudinal.persistent_strengths),
                )

        prompt = build_reflection_prompt(interactions, context_signals, previous, longitudinal)
        response = await self._request_critique(prompt)
        if response is None:
            return None

        critique = extract_critique(response)
        if critique is None:
            logger.debug("Reflection response did not contain a usable critique")
            return None
        critique.generated_at = datetime.now(timezone.utc).isoformat()

        await self.store_reflection(
            critique,
            interactions,
            raw=response,
            prompt=prompt,
            context_signals=context_signals,
            previous=previous,
            longitudinal=longitudinal,
        )
        self.last_analysis = critique

        highlight = (critique.strengths or critique.recommendations or ["analysis complete"])[0]
        logger.info("Completed reflection on %d interactions → %s", len(interactions), highlight)
        return critique

    async def get_recent_interactions(
        self, limit: int | None = None,
    ) -> tuple[list[InteractionRecord], list[str]]:
        limit = limit or self.config["max_interactions"]
        records = await self.store.get_records(
            table=self.config["message_table"], count=max(limit * 8, limit + 40),
        )
        if not records:
            return [], []
        return await self.reconstructor.reconstruct(records, limit)

    async def _request_critique(self, prompt: str) -> str | None:
        cfg = self.config
        try:
            response = await asyncio.wait_for(
                self.generate(
                    cfg["llm_tier"], prompt,
                    temperature=cfg["llm_temperature"], max_tokens=cfg["llm_max_tokens"],
                ),
                timeout=cfg["llm_timeout_seconds"],
            )
        except asyncio.TimeoutError:
            logger.warning("Reflection generation timed out after %ss", cfg["llm_timeout_seconds"])
            return None
        except Exception:
            logger.warning("Failed to generate reflection", exc_info=True)
            return None

        if not response or not str(response).strip():
            logger.warning("Empty LLM response for reflection")
            return None
        return str(response)

    async def store_reflection(
        self,
        critique: CritiqueRecord,
        interactions: list[InteractionRecord],
        raw: str | None = None,
        prompt: str | None = None,
        context_signals: list[str] | None = None,
        previous: list[CritiqueRecord] | None = None,
        longitudinal: LongitudinalSummary | None = None,
    ) -> bool:
        """Append a reflection to the history and refresh the summary cache."""
        cfg = self.config
        generated_at = critique.generated_at or datetime.now(timezone.utc).isoformat()
        record = EventRecord(
            author_ref=cfg["reflection_entity"],
            room_ref=cfg["reflection_room"],
            type=cfg["reflection_type"],
            source=cfg["reply_source"],
            data={
                "generated_at": generated_at,
                "interactions_analyzed": len(interactions),
                "analysis": asdict(critique),
                "raw_output": trim(raw, cfg["raw_output_chars"]),
                "prompt_preview": trim(prompt, cfg["prompt_preview_chars"]),
                "context": {
                    "interactions": [serialize_interaction(i, cfg) for i in interactions],
                    "signals": [truncate(s, cfg["context_signal_chars"]) for s in context_signals or []],
                    "previous_reflections": [asdict(p) for p in previous or []],
                },
                "longitudinal_analysis": summarize_longitudinal(longitudinal),
            },
        )

        try:
            await self.store.append_record(record, table=cfg["message_table"])
        except UpstreamUnavailable:
            logger.warning("Failed to persist reflection insights", exc_info=True)
            return False

        logger.debug("Stored reflection insights")
        self._latest_cache = (time.monotonic(), build_insights_summary(critique, generated_at, cfg))
        return True

    # ── Read contract ──

    async def _load_reflections(self, count: int) -> list[EventRecord]:
        try:
            return await self.store.get_records(
                table=self.config["message_table"],
                scope=self.config["reflection_room"],
                count=count,
            )
        except UpstreamUnavailable:
            logger.debug("Failed to load reflection history", exc_info=True)
            return []

    def _to_entry(self, record: EventRecord) -> ReflectionEntry | None:
        analysis = record.data.get("analysis")
        if not isinstance(analysis, dict):
            return None
        generated_at = parse_iso(record.data.get("generated_at"))
        if generated_at is None and record.created_at:
            generated_at = datetime.fromtimestamp(record.created_at / 1000, tz=timezone.utc)
        interactions = record.data.get("interactions_analyzed")
        return ReflectionEntry(
            critique=critique_from_mapping(analysis),
            generated_at=generated_at,
            interactions_analyzed=interactions if isinstance(interactions, int) else None,
            record_id=record.id,
        )

    def _summarize(self, entry: ReflectionEntry) -> CritiqueRecord | None:
        stamp = entry.generated_at.isoformat() if entry.generated_at else None
        return build_insights_summary(entry.critique, stamp, self.config)

    async def get_latest_summary(
        self,
        max_age_hours: float | None = None,
        limit: int = 5,
        cache_seconds: float | None = None,
    ) -> CritiqueRecord | None:
        """Most recent critique summary, served from cache while fresh."""
        if not self.enabled:
            return None

        ttl = self.config["insights_cache_seconds"] if cache_seconds is None else cache_seconds
        if ttl > 0 and self._latest_cache is not None:
            cached_at, cached = self._latest_cache
            if 0 <= time.monotonic() - cached_at < ttl:
                return cached

        max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
        now = datetime.now(timezone.utc)
        summary = None
        for record in await self._load_reflections(max(1, limit)):
            entry = self._to_entry(record)
            if entry is None:
                continue
            if max_age and entry.generated_at and now - entry.generated_at > max_age:
                continue
            summary = self._summarize(entry)
            if summary:
                break

        if summary is None and self.last_analysis is not None:
            summary = build_insights_summary(
                CritiqueRecord(
                    strengths=self.last_analysis.strengths,
                    weaknesses=self.last_analysis.weaknesses,
                ),
                self.last_analysis.generated_at,
                self.config,
            )

        self._latest_cache = (time.monotonic(), summary)
        return summary

    async def get_history(
        self, limit: int = 3, max_age_hours: float | None = None,
    ) -> list[CritiqueRecord]:
        """Recent valid critiques, newest first (at most 10)."""
        if not self.enabled:
            return []
        limit = max(1, min(10, int(limit or 3)))
        max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
        now = datetime.now(timezone.utc)

        summaries: list[CritiqueRecord] = []
        for record in await self._load_reflections(max(limit * 2, limit + 2)):
            entry = self._to_entry(record)
            if entry is None or not is_valid_critique(entry.critique):
                continue
            if max_age and entry.generated_at and now - entry.generated_at > max_age:
                continue
            summary = self._summarize(entry)
            if summary:
                summaries.append(summary)
            if len(summaries) >= limit:
                break
        return summaries

    async def get_long_term_history(
        self, limit: int = 20, max_age_days: float = 90, now: datetime | None = None,
    ) -> list[ReflectionEntry]:
        """Timestamped reflections within ``max_age_days``, newest first (at most 50)."""
        if not self.enabled:
            return []
        limit = max(1, min(50, int(limit or 20)))
        now = now or datetime.now(timezone.utc)
        max_age = timedelta(days=max_age_days or 90)

        entries: list[ReflectionEntry] = []
        for record in await self._load_reflections(max(limit * 2, 100)):
            entry = self._to_entry(record)
            if entry is None or entry.generated_at is None:
                continue
            if now - entry.generated_at > max_age:
                continue
            summary = self._summarize(entry)
            if summary is None:
                continue
            entries.append(ReflectionEntry(
                critique=summary,
                generated_at=entry.generated_at,
                interactions_analyzed=entry.interactions_analyzed,
                record_id=entry.record_id,
            ))
            if len(entries) >= limit:
                break
        return entries

    async def get_longitudinal_summary(
        self,
        limit: int | None = None,
        max_age_days: float | None = None,
        now: datetime | None = None,
    ) -> LongitudinalSummary | None:
        """Aggregate the long-term history; None until two reflections exist."""
        if not self.enabled:
            return None
        now = now or datetime.now(timezone.utc)
        history = await self.get_long_term_history(
            limit=limit or self.config["longitudinal_limit"],
            max_age_days=max_age_days or self.config["longitudinal_max_age_days"],
            now=now,
        )
        return aggregate(history, now, self.config)

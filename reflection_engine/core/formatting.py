"""Formatting for reflection prompts and persisted snapshots."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from reflection_engine.config import REFLECTION_CONFIG
from reflection_engine.core.text import limited_list, to_iso, truncate
from reflection_engine.models import (
    CritiqueRecord,
    InteractionRecord,
    LongitudinalSummary,
    Role,
)
from reflection_engine.prompts import (
    LONGITUDINAL_OUTRO,
    PREVIOUS_REFLECTIONS_OUTRO,
    REFLECTION_INSTRUCTIONS,
    REFLECTION_INTRO,
)


def build_insights_summary(
    critique: CritiqueRecord | None,
    generated_at: str | None = None,
    config: dict[str, Any] | None = None,
) -> CritiqueRecord | None:
    """Compact a critique for prompts and caches; None if nothing is left."""
    if critique is None:
        return None
    cfg = config or REFLECTION_CONFIG
    limit = cfg["summary_item_limit"]
    chars = cfg["summary_item_chars"]

    def _limit(values: list[str]) -> list[str]:
        return limited_list(values, limit, chars)

    summary = CritiqueRecord(
        strengths=_limit(critique.strengths),
        weaknesses=_limit(critique.weaknesses),
        patterns=_limit(critique.patterns),
        recommendations=_limit(critique.recommendations),
        example_good_reply=truncate(critique.example_good_reply, cfg["example_reply_chars"]) or None,
        example_bad_reply=truncate(critique.example_bad_reply, cfg["example_reply_chars"]) or None,
        regressions=_limit(critique.regressions),
        improvements=_limit(critique.improvements),
        narrative_summary=truncate(critique.narrative_summary, cfg["example_reply_chars"]) or None,
        key_learnings=_limit(critique.key_learnings),
        suggested_phase=critique.suggested_phase,
        generated_at=generated_at or critique.generated_at,
    )
    has_content = any((
        summary.strengths, summary.weaknesses, summary.recommendations, summary.patterns,
        summary.improvements, summary.regressions,
        summary.example_good_reply, summary.example_bad_reply,
    ))
    return summary if has_content else None


def serialize_interaction(
    interaction: InteractionRecord, config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Truncated, JSON-ready snapshot of an interaction for persistence."""
    cfg = config or REFLECTION_CONFIG
    message_chars = cfg["snapshot_message_chars"]
    turn_chars = cfg["snapshot_turn_chars"]
    meta = interaction.metadata
    return {
        "user_message": truncate(interaction.user_message, message_chars),
        "agent_reply": truncate(interaction.agent_reply, message_chars),
        "metadata": {
            "masked_author_id": meta.masked_author_id,
            "reply_id": meta.reply_id,
            "room_ref": meta.room_ref,
            "created_at": meta.created_at,
            "created_at_iso": to_iso(meta.created_at),
            "participants": list(meta.participants),
        },
        "conversation": [
            {
                "role": turn.role.value,
                "author": turn.author,
                "text": truncate(turn.text, turn_chars),
                "created_at_iso": to_iso(turn.timestamp),
                "type": turn.source_type,
            }
            for turn in interaction.conversation
        ],
        "feedback": [
            {
                "author": item.author,
                "summary": truncate(item.summary, turn_chars),
                "created_at_iso": to_iso(item.timestamp),
            }
            for item in interaction.feedback
        ],
        "signals": [truncate(signal, cfg["snapshot_signal_chars"]) for signal in interaction.signals],
    }


def summarize_longitudinal(summary: LongitudinalSummary | None) -> dict[str, Any] | None:
    """Digest of a longitudinal summary stored alongside a reflection."""
    if summary is None:
        return None
    return {
        "timespan": asdict(summary.timespan),
        "recurring_issues_count": len(summary.recurring_issues),
        "persistent_strengths_count": len(summary.persistent_strengths),
        "recurring_issues": limited_list([i.issue for i in summary.recurring_issues], 5),
        "persistent_strengths": limited_list([s.strength for s in summary.persistent_strengths], 5),
        "evolution_trends": asdict(summary.evolution_trends),
    }


# ── Prompt sections ──

def _format_previous(previous: list[CritiqueRecord]) -> str:
    if not previous:
        return ""
    blocks = []
    for idx, summary in enumerate(previous):
        lines = [f"- {summary.generated_at or f'summary-{idx + 1}'}"]
        for label, values in (
            ("Strengths", summary.strengths),
            ("Weaknesses", summary.weaknesses),
            ("Recommendations", summary.recommendations),
            ("Patterns", summary.patterns),
        ):
            if values:
                lines.append(f"{label}: {'; '.join(values)}")
        blocks.append("\n  ".join(lines))
    return ("RECENT SELF-REFLECTION INSIGHTS (most recent first):\n"
            + "\n".join(blocks) + f"\n\n{PREVIOUS_REFLECTIONS_OUTRO}")


def _joined(values: list[str]) -> str:
    return "; ".join(values) if values else "none detected"


def format_longitudinal_section(summary: LongitudinalSummary | None) -> str:
    if summary is None:
        return ""
    span = summary.timespan
    issues = "\n".join(
        f"- {i.issue} ({i.occurrences}x, status: {i.severity}, "
        f"periods: {', '.join(p.value for p in i.periods_covered)})"
        for i in summary.recurring_issues
    ) or "- No recurring issues detected"
    strengths = "\n".join(
        f"- {s.strength} ({s.occurrences}x, {s.consistency}, "
        f"periods: {', '.join(p.value for p in s.periods_covered)})"
        for s in summary.persistent_strengths
    ) or "- No persistent strengths detected"
    trends = summary.evolution_trends
    return (
        f"LONGITUDINAL ANALYSIS ({span.total} reflections from {span.oldest} to {span.newest}):\n\n"
        f"RECURRING ISSUES (patterns that persist across time periods):\n{issues}\n\n"
        f"PERSISTENT STRENGTHS (consistent positive patterns):\n{strengths}\n\n"
        "EVOLUTION TRENDS:\n"
        f"- Strengths gained: {_joined(trends.strengths_gained)}\n"
        f"- Weaknesses resolved: {_joined(trends.weaknesses_resolved)}\n"
        f"- New challenges: {_joined(trends.new_challenges)}\n"
        f"- Stagnant areas: {_joined(trends.stagnant_areas)}\n\n"
        f"{LONGITUDINAL_OUTRO}"
    )


def _format_interaction(index: int, interaction: InteractionRecord) -> str:
    convo = "\n".join(
        f"  - [{'YOU' if turn.role is Role.AGENT else turn.author}"
        f"{f' • {turn.source_type}' if turn.source_type else ''}] {turn.text}"
        f"{f' ({to_iso(turn.timestamp)})' if turn.timestamp is not None else ''}"
        for turn in interaction.conversation
    ) or "  - [no additional messages captured]"
    feedback = "\n".join(
        f"  - {item.author or 'user'}: {item.summary}"
        f"{f' ({to_iso(item.timestamp)})' if item.timestamp is not None else ''}"
        for item in interaction.feedback
    ) or "  - No direct follow-up captured yet"
    signals = "\n".join(f"  - {signal}" for signal in interaction.signals) \
        or "  - No auxiliary signals found in this window"

    stamp = to_iso(interaction.metadata.created_at) or "unknown time"
    return (
        f"INTERACTION {index} ({stamp}):\n"
        f'Primary user message: "{interaction.user_message}"\n'
        f'Your reply: "{interaction.agent_reply}"\n'
        f"Conversation excerpt:\n{convo}\n"
        f"Follow-up / feedback after your reply:\n{feedback}\n"
        f"Supplementary signals for this moment:\n{signals}"
    )


def build_reflection_prompt(
    interactions: list[InteractionRecord],
    context_signals: list[str] | None = None,
    previous: list[CritiqueRecord] | None = None,
    longitudinal: LongitudinalSummary | None = None,
) -> str:
    """Assemble the critique request sent to the generative model."""
    signals_section = ""
    if context_signals:
        signals_section = ("CROSS-MEMORY SIGNALS (other memory types near these threads):\n"
                           + "\n".join(f"- {signal}" for signal in context_signals))

    interactions_section = "\n\n".join(
        _format_interaction(idx, interaction) for idx, interaction in enumerate(interactions, start=1)
    ) or "No recent interactions available."

    sections = [
        REFLECTION_INTRO,
        _format_previous(previous or []),
        format_longitudinal_section(longitudinal),
        signals_section,
        interactions_section,
        REFLECTION_INSTRUCTIONS,
    ]
    return "\n\n".join(section for section in sections if section)

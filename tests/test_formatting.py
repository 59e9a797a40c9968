"""Tests for prompt assembly and persisted snapshots."""

from reflection_engine.core.formatting import (
    build_insights_summary,
    build_reflection_prompt,
    serialize_interaction,
)
from reflection_engine.models import (
    CritiqueRecord,
    EvolutionTrends,
    FollowupTurn,
    InteractionMetadata,
    InteractionRecord,
    LongitudinalSummary,
    PeriodBucket,
    RecurringIssue,
    Role,
    Timespan,
    Turn,
)


def _interaction() -> InteractionRecord:
    return InteractionRecord(
        user_message="hey, loved the last piece",
        agent_reply="thanks! what stood out?",
        conversation=[
            Turn(id="p1", role=Role.COUNTERPART, author="npub1u…abcd", text="hey, loved the last piece",
                 timestamp=1_760_000_000_000),
            Turn(id="r1", role=Role.AGENT, author="you", text="thanks! what stood out? " * 20,
                 timestamp=1_760_000_060_000, is_reply=True),
        ],
        feedback=[FollowupTurn(author="npub1u…abcd", summary="the colours", timestamp=1_760_000_120_000)],
        signals=["reaction: liked your post"],
        metadata=InteractionMetadata(masked_author_id="npub1u…abcd", reply_id="r1",
                                     room_ref="room-1", created_at=1_760_000_060_000),
    )


def test_prompt_contains_interaction_sections():
    prompt = build_reflection_prompt([_interaction()], context_signals=["digest @ now: quiet day"])
    assert "INTERACTION 1" in prompt
    assert "[YOU]" in prompt
    assert "the colours" in prompt
    assert "reaction: liked your post" in prompt
    assert "CROSS-MEMORY SIGNALS" in prompt
    assert prompt.rstrip().endswith("}")


def test_prompt_includes_previous_and_longitudinal():
    previous = [CritiqueRecord(strengths=["warm"], weaknesses=["long"], generated_at="2026-01-01")]
    longitudinal = LongitudinalSummary(
        timespan=Timespan(oldest="a", newest="b", total=3),
        recurring_issues=[RecurringIssue("verbose replies", 3, [PeriodBucket.RECENT, PeriodBucket.OLDER],
                                         "ongoing")],
        evolution_trends=EvolutionTrends(new_challenges=["too formal"]),
    )
    prompt = build_reflection_prompt([_interaction()], previous=previous, longitudinal=longitudinal)
    assert "RECENT SELF-REFLECTION INSIGHTS" in prompt
    assert "Strengths: warm" in prompt
    assert "verbose replies (3x, status: ongoing, periods: recent, older)" in prompt
    assert "New challenges: too formal" in prompt
    assert "No persistent strengths detected" in prompt


def test_serialize_interaction_truncates_turns():
    snapshot = serialize_interaction(_interaction())
    reply_turn = snapshot["conversation"][1]
    assert reply_turn["role"] == "agent"
    assert len(reply_turn["text"]) == 220
    assert snapshot["metadata"]["created_at_iso"].startswith("2025-10-09")


def test_insights_summary_empty_critique_is_none():
    assert build_insights_summary(CritiqueRecord()) is None
    assert build_insights_summary(None) is None


def test_insights_summary_keeps_timestamp():
    summary = build_insights_summary(CritiqueRecord(strengths=["warm"]), "2026-01-01T00:00:00+00:00")
    assert summary.generated_at == "2026-01-01T00:00:00+00:00"

"""Prompt text for the self-reflection cycle."""

REFLECTION_INTRO = (
    "You are reviewing your recent conversations. Use the full conversation slices, "
    "feedback, cross-memory signals, and prior self-reflection insights to evaluate "
    "your performance comprehensively."
)

PREVIOUS_REFLECTIONS_OUTRO = (
    "Compare current performance to these past learnings. "
    "Highlight improvements or regressions explicitly."
)

LONGITUDINAL_OUTRO = (
    "Use this long-term view to assess whether current behavior aligns with your "
    "evolution trajectory or if you're reverting to old patterns."
)

REFLECTION_INSTRUCTIONS = """ANALYZE:
1. Which replies or conversation choices drove positive engagement, and why?
2. Where did the conversation falter or trigger negative/neutral feedback?
3. Are you balancing brevity with substance? Note instances of over-verbosity or curt replies.
4. Call out any repeated phrases, tonal habits, or narrative crutches (good or bad).
5. Compare against prior self-reflection recommendations: where did you improve or regress?
6. Consider the longitudinal analysis: are recurring issues being addressed? Are persistent strengths being maintained?
7. Evaluate appreciation received on specific posts and what content patterns drove it.
8. Surface actionable adjustments for tone, structure, or strategy across future interactions.

For each interaction, provide SPECIFIC behavioral changes:
- Quote exact phrases from your replies that need improvement
- Identify specific words or patterns to eliminate
- Recommend exact wording alternatives for better engagement

OUTPUT VALID JSON ONLY - NO MARKDOWN, NO EXPLANATIONS, NO CODE BLOCKS.
Your entire response must be a single valid JSON object with this exact structure:
{
  "strengths": ["Specific successful approaches to continue using"],
  "weaknesses": ["Exact problematic phrases or patterns to eliminate"],
  "patterns": ["Repeated behaviors that need conscious breaking"],
  "recommendations": ["Specific actionable changes with concrete examples"],
  "exampleGoodReply": "Quote your best reply verbatim",
  "exampleBadReply": "Quote your weakest moment verbatim",
  "regressions": ["Where you slipped compared to prior reflections"],
  "improvements": ["Where you improved compared to prior reflections"],
  "narrativeSummary": "One or two sentences on how your voice is evolving",
  "keyLearnings": ["Short lessons to carry into the next conversations"],
  "suggestedPhase": "A short label for the phase you are in"
}"""

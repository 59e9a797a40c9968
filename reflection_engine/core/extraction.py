"""Turn a generated critique into a CritiqueRecord.

Model output is unreliable: sometimes clean JSON, sometimes JSON wrapped in
prose or code fences, sometimes a markdown write-up. Extraction runs a short
chain of independent parsers and keeps the first record one of them accepts:

  1. Structured: the first balanced ``{...}`` span, parsed as JSON.
  2. Markdown: section headers with flexible wording, followed by bullets.

A response neither parser accepts yields ``None`` ("no critique this cycle").
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from reflection_engine.models import CritiqueRecord

logger = logging.getLogger(__name__)

Parser = Callable[[str], "CritiqueRecord | None"]

LIST_FIELDS = (
    "strengths", "weaknesses", "patterns", "recommendations",
    "regressions", "improvements", "key_learnings",
)
REQUIRED_FIELDS = ("strengths", "weaknesses", "recommendations")
MARKDOWN_PRIMARY_FIELDS = ("strengths", "weaknesses", "patterns", "recommendations")
MIN_ITEM_CHARS = 4

# JSON key -> CritiqueRecord field
_KEY_ALIASES = {
    "exampleGoodReply": "example_good_reply",
    "exampleBadReply": "example_bad_reply",
    "narrativeSummary": "narrative_summary",
    "narrativeEvolution": "narrative_summary",
    "keyLearnings": "key_learnings",
    "suggestedPhase": "suggested_phase",
    "generatedAt": "generated_at",
}


def count_non_empty(record: CritiqueRecord, fields: tuple[str, ...]) -> int:
    return sum(1 for name in fields if getattr(record, name))


def is_valid_critique(record: CritiqueRecord | None) -> bool:
    """A critique needs at least two of strengths, weaknesses, recommendations."""
    return record is not None and count_non_empty(record, REQUIRED_FIELDS) >= 2


# ── Structured path ──

def find_balanced_object(text: str) -> str | None:
    """Return the first bracket-balanced ``{...}`` span in ``text``.

    Braces inside JSON strings are ignored. Returns None if no opening brace
    is ever closed.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:idx + 1]
        start = text.find("{", start + 1)
    return None


def _as_string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    items = [str(item).strip() for item in value if item is not None and not isinstance(item, (dict, list))]
    return [item for item in items if item]


def _as_optional_string(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def critique_from_mapping(data: Mapping[str, Any]) -> CritiqueRecord:
    """Build a CritiqueRecord from camelCase or snake_case keys."""
    normalized = {_KEY_ALIASES.get(key, key): value for key, value in data.items()}
    record = CritiqueRecord()
    for name in LIST_FIELDS:
        setattr(record, name, _as_string_list(normalized.get(name)))
    for name in ("example_good_reply", "example_bad_reply", "narrative_summary",
                 "suggested_phase", "generated_at"):
        setattr(record, name, _as_optional_string(normalized.get(name)))
    return record


def parse_structured(text: str) -> CritiqueRecord | None:
    span = find_balanced_object(text)
    if span is None:
        return None
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        logger.debug("Critique JSON parse failed, trying markdown fallback: %s", exc)
        return None
    if not isinstance(data, dict):
        return None

    record = critique_from_mapping(data)
    if not is_valid_critique(record):
        logger.debug("Critique JSON parsed but missing required fields, trying markdown fallback")
        return None
    return record


# ── Markdown path ──

# Checked in order; the first family whose pattern matches a header wins.
_HEADER_FAMILIES: list[tuple[str, re.Pattern[str]]] = [
    ("recommendations", re.compile(
        r"\b(?:recommendations?|suggestions?|actionable (?:changes?|improvements?|adjustments?)"
        r"|next steps?|advice|action items?)\b")),
    ("weaknesses", re.compile(
        r"\b(?:weaknesses?|what needs? (?:improvement|work)|needs? improvement"
        r"|areas? (?:to|for) improve(?:ment)?|negatives?|issues?)\b")),
    ("regressions", re.compile(
        r"\b(?:regressions?|(?:where|areas?)(?: where)? (?:you )?slipped|went backwards?)\b")),
    ("improvements", re.compile(
        r"\b(?:improvements?|(?:where|areas?)(?: where)? (?:you )?improved|progress)\b")),
    ("strengths", re.compile(
        r"\b(?:strengths?|what (?:'s|is|you'?re|you are) (?:working|doing) well|doing well"
        r"|positives?)\b")),
    ("patterns", re.compile(r"\b(?:patterns?|repeated behaviou?rs?|habits?)\b")),
]

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*)$")
_HEADING = re.compile(r"^\s*#{1,6}\s*(.+?)\s*#*\s*$")
_DECORATION = re.compile(r"[*_`]+")
_LABEL = re.compile(r"^[\w\s'’/&()-]+$")
_MAX_LABEL_WORDS = 6

_GOOD_REPLY = re.compile(
    r"(?:best|good|strong|example good)\s*(?:reply|response|moment)[:\s]*[\"“]([^\"”]+)[\"”]",
    re.IGNORECASE,
)
_BAD_REPLY = re.compile(
    r"(?:worst|bad|weak|example bad)\s*(?:reply|response|moment)[:\s]*[\"“]([^\"”]+)[\"”]",
    re.IGNORECASE,
)


def _match_family(label: str) -> str | None:
    label = label.strip().lower()
    if not label or not _LABEL.match(label) or len(label.split()) > _MAX_LABEL_WORDS:
        return None
    for name, pattern in _HEADER_FAMILIES:
        if pattern.search(label):
            return name
    return None


def _parse_header(line: str) -> tuple[str, str] | None:
    """Return (field, inline content) when ``line`` is a section header."""
    heading = _HEADING.match(line)
    if heading:
        line = heading.group(1)
        is_heading = True
    else:
        is_heading = False

    stripped = line.strip()
    bold = stripped.startswith(("**", "__")) and stripped.endswith(("**", "__", ":"))
    cleaned = _DECORATION.sub("", stripped).strip()
    if not cleaned:
        return None

    if ":" in cleaned:
        label, _, rest = cleaned.partition(":")
    elif is_heading or bold:
        label, rest = cleaned, ""
    else:
        return None

    name = _match_family(label)
    if name is None:
        return None
    return name, rest.strip()


def _clean_item(text: str) -> str:
    return _DECORATION.sub("", text).strip().strip('"“”').strip()


def _add_items(target: list[str], items: list[str]) -> None:
    for item in items:
        item = _clean_item(item)
        if len(item) >= MIN_ITEM_CHARS and item not in target:
            target.append(item)


def parse_markdown(text: str) -> CritiqueRecord | None:
    sections: dict[str, list[str]] = {name: [] for name in LIST_FIELDS}
    current: str | None = None
    blank_run = 0

    for line in text.splitlines():
        if not line.strip():
            blank_run += 1
            if blank_run >= 2:
                current = None
            continue
        blank_run = 0

        # Bullets are always items, even when they contain a "label:" prefix
        bullet = _BULLET.match(line)
        if bullet:
            if current is not None:
                _add_items(sections[current], [bullet.group(1)])
            continue

        header = _parse_header(line)
        if header is not None:
            current, inline = header
            if inline and not _GOOD_REPLY.search(line) and not _BAD_REPLY.search(line):
                _add_items(sections[current], inline.split(";"))
            continue

        current = None

    record = CritiqueRecord(**sections)
    good = _GOOD_REPLY.search(text)
    if good:
        record.example_good_reply = good.group(1).strip()
    bad = _BAD_REPLY.search(text)
    if bad:
        record.example_bad_reply = bad.group(1).strip()

    if count_non_empty(record, MARKDOWN_PRIMARY_FIELDS) < 2:
        return None
    logger.debug("Extracted critique from markdown response")
    return record


PARSERS: tuple[Parser, ...] = (parse_structured, parse_markdown)


def extract_critique(raw_text: str | None, parsers: tuple[Parser, ...] = PARSERS) -> CritiqueRecord | None:
    """Run ``parsers`` in order and return the first record produced."""
    if not raw_text or not isinstance(raw_text, str):
        return None
    for parser in parsers:
        record = parser(raw_text)
        if record is not None:
            return record
    logger.debug("Failed to extract a critique from response")
    return None

"""Text helpers shared by reconstruction, persistence and aggregation."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

_WHITESPACE = re.compile(r"\s+")
_TERMINAL_PUNCTUATION = ".,!?;: "
ELLIPSIS = "…"


def truncate(text: Any, limit: int = 320) -> str:
    """Collapse whitespace and cap the result at ``limit`` characters.

    Over-long text keeps ``limit - 1`` characters followed by an ellipsis, so
    the result is never longer than ``limit``.
    """
    if not text:
        return ""
    collapsed = _WHITESPACE.sub(" ", str(text)).strip()
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 1] + ELLIPSIS


def trim(text: str | None, limit: int) -> str | None:
    """Cut raw text at ``limit`` characters without touching whitespace."""
    if not text:
        return None
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def mask_author_id(author_id: str | None) -> str:
    if not author_id or not isinstance(author_id, str):
        return "unknown"
    return f"{author_id[:6]}{ELLIPSIS}{author_id[-4:]}"


def to_iso(timestamp_ms: int | float | None) -> str | None:
    if timestamp_ms is None:
        return None
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware datetime (UTC if naive)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_for_comparison(text: Any) -> str:
    """Comparison key for critique items.

    Lowercases, collapses whitespace and strips terminal punctuation. Applying
    it to its own output returns the same string.
    """
    if not text or not isinstance(text, str):
        return ""
    collapsed = _WHITESPACE.sub(" ", text.lower()).strip()
    return collapsed.rstrip(_TERMINAL_PUNCTUATION)


def limited_list(values: Any, limit: int = 4, item_chars: int = 220) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    items = [truncate(item, item_chars) for item in values if item]
    return [item for item in items if item][:limit]

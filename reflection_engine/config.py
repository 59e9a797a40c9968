"""Configuration for the self-reflection engine."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Base data directory — all runtime data stored here
DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "events.db"

REFLECTION_CONFIG = {
    "enabled": True,

    # LLM
    "llm_models": {
        "small": "claude-haiku-4-5",
        "large": "claude-sonnet-4-6",
    },
    "llm_tier": "large",
    "llm_temperature": 0.75,
    "llm_max_tokens": 800,
    "llm_timeout_seconds": 90.0,

    # Event log
    "message_table": "messages",
    "reply_source": "nostr",
    "max_interactions": 40,

    # Conversation windows
    "convo_window_before": 4,
    "convo_window_after": 3,
    "signal_window_padding_minutes": 15,
    "signal_fallback_window_minutes": 30,
    "max_feedback_turns": 3,
    "max_signals_per_interaction": 5,
    "max_global_signals": 8,
    "excluded_signal_types": ["self_reflection", "nostr_thread_context"],

    # Appreciation correlation
    "appreciation_type": "zap_thanks",
    "appreciation_correlation_enabled": True,

    # Reflection storage
    "reflection_type": "self_reflection",
    "reflection_room": "self-reflection",
    "reflection_entity": "self-reflection-entity",

    # Field caps (characters)
    "turn_text_chars": 320,
    "snapshot_message_chars": 280,
    "snapshot_turn_chars": 220,
    "snapshot_signal_chars": 220,
    "context_signal_chars": 320,
    "summary_item_chars": 220,
    "summary_item_limit": 4,
    "example_reply_chars": 320,
    "raw_output_chars": 4000,
    "prompt_preview_chars": 2000,

    # Reflection history
    "history_limit": 3,
    "history_max_age_hours": 24 * 14,
    "longitudinal_enabled": True,
    "longitudinal_limit": 20,
    "longitudinal_max_age_days": 90,
    "insights_cache_seconds": 300,

    # Longitudinal aggregation
    "period_recent_days": 7,
    "period_one_week_ago_days": 14,
    "period_one_month_ago_days": 35,
    "recurring_min_periods": 2,
    "recurring_min_occurrences": 3,
    "summary_top_n": 5,
    "trend_top_n": 3,
}

# Environment variable -> (config key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "REFLECTION_ENABLE": ("enabled", "bool"),
    "REFLECTION_INTERACTION_LIMIT": ("max_interactions", "positive_int"),
    "REFLECTION_TEMPERATURE": ("llm_temperature", "float"),
    "REFLECTION_MAX_TOKENS": ("llm_max_tokens", "positive_int"),
    "REFLECTION_CONVO_BEFORE": ("convo_window_before", "positive_int"),
    "REFLECTION_CONVO_AFTER": ("convo_window_after", "positive_int"),
    "REFLECTION_APPRECIATION_CORRELATION_ENABLE": ("appreciation_correlation_enabled", "bool"),
    "REFLECTION_LLM_TIMEOUT": ("llm_timeout_seconds", "float"),
}


def _parse(raw: str, kind: str) -> Any:
    if kind == "bool":
        return raw.strip().lower() == "true"
    if kind == "float":
        return float(raw)
    value = int(raw)
    if value <= 0:
        raise ValueError(f"expected a positive integer, got {value}")
    return value


def load_config(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return a copy of REFLECTION_CONFIG with environment overrides applied.

    Unparseable values are logged and ignored so the defaults stay in effect.
    """
    environ = os.environ if environ is None else environ
    config = dict(REFLECTION_CONFIG)
    for name, (key, kind) in _ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or not raw.strip():
            continue
        try:
            config[key] = _parse(raw, kind)
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", name, raw)
    return config

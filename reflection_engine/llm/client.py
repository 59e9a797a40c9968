"""LiteLLM wrapper with retry and structured logging."""

from __future__ import annotations

import logging

import litellm

from reflection_engine.config import REFLECTION_CONFIG
from reflection_engine.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True


def resolve_model(tier: str, models: dict[str, str] | None = None) -> str:
    """Map a model tier ("small", "large") to a concrete model name."""
    models = models or REFLECTION_CONFIG["llm_models"]
    return models.get(tier) or models["large"]


async def llm_complete(
    prompt: str,
    system: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    max_retries: int = 3,
) -> str:
    """Send a completion request via litellm and return the text response.

    Raises UpstreamUnavailable once every attempt has failed.
    """
    model = model or resolve_model(REFLECTION_CONFIG["llm_tier"])
    temperature = temperature if temperature is not None else REFLECTION_CONFIG["llm_temperature"]
    max_tokens = max_tokens or REFLECTION_CONFIG["llm_max_tokens"]

    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    for attempt in range(max_retries):
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""
        except Exception as exc:
            if attempt == max_retries - 1:
                raise UpstreamUnavailable(f"LLM call to {model} failed") from exc
            logger.warning("LLM call failed (attempt %d/%d), retrying...", attempt + 1, max_retries)

    return ""  # unreachable but satisfies type checker


async def generate(
    tier: str,
    prompt: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """Generative-model adapter consumed by the reflection engine."""
    return await llm_complete(
        prompt,
        model=resolve_model(tier),
        temperature=temperature,
        max_tokens=max_tokens,
    )

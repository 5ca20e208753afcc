# =============================================================================
# Provider Pricing Registry — Cost Estimation in Cents
# =============================================================================
#
# Maps (provider_type, model_name) → per-token costs in US cents.
# The agent runtime prices every generation call with this registry and
# the budget guard records the result against the user's monthly budget.
#
# Costs are stored per TOKEN so a price lookup is a single multiply:
#   cost = input_cost_per_token * input_tokens
#
# estimate_cost_cents() returns None for unknown models. The runtime
# records such calls at zero cost and logs a warning, so unknown pricing
# never blocks a generation but stays visible in the logs.
#
# Source: provider pricing pages. Update this dict when prices change.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass

# USD per million tokens → cents per token
_PER_MILLION = 100 / 1_000_000


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelPricing:
    """Per-token costs for a model."""

    input_cost_per_token: float    # cents per input token
    output_cost_per_token: float   # cents per output token
    provider_label: str            # Human-readable provider name


def _per_million(input_usd: float, output_usd: float, label: str) -> ModelPricing:
    return ModelPricing(input_usd * _PER_MILLION, output_usd * _PER_MILLION, label)


# ---------------------------------------------------------------------------
# Pricing Registry
# ---------------------------------------------------------------------------
# provider_type matches the prefix in provider_id strings accepted by
# create_provider_from_id(): "anthropic" or "openai_compatible".
# ---------------------------------------------------------------------------

PRICING_REGISTRY: dict[tuple[str, str], ModelPricing] = {
    # --- Anthropic ---
    ("anthropic", "claude-sonnet-4-6"): _per_million(3.00, 15.00, "Anthropic"),
    ("anthropic", "claude-sonnet-4-5-20250929"): _per_million(
        3.00, 15.00, "Anthropic",
    ),
    ("anthropic", "claude-3-5-sonnet-20241022"): _per_million(
        3.00, 15.00, "Anthropic",
    ),
    ("anthropic", "claude-haiku-4-5"): _per_million(0.80, 4.00, "Anthropic"),
    ("anthropic", "claude-3-haiku-20240307"): _per_million(
        0.25, 1.25, "Anthropic",
    ),

    # --- OpenAI ---
    ("openai_compatible", "gpt-4o"): _per_million(2.50, 10.00, "OpenAI"),
    ("openai_compatible", "gpt-4o-mini"): _per_million(0.15, 0.60, "OpenAI"),

    # --- Google (via OpenAI-compatible endpoint) ---
    ("openai_compatible", "gemini-1.5-flash"): _per_million(
        0.075, 0.30, "Google",
    ),
    ("openai_compatible", "gemini-1.5-pro"): _per_million(1.25, 5.00, "Google"),

    # --- DeepSeek ---
    ("openai_compatible", "deepseek-chat"): _per_million(0.14, 0.28, "DeepSeek"),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def estimate_cost_cents(
    provider_type: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """
    Calculate estimated cost in cents for a completion.

    Returns None if the model is not in the registry (unknown pricing).

    Args:
        provider_type: "anthropic" or "openai_compatible".
        model: Model name as returned by the provider API.
        input_tokens: Tokens consumed by the prompt.
        output_tokens: Tokens generated in the response.
    """
    pricing = PRICING_REGISTRY.get((provider_type, model))
    if pricing is None:
        return None
    return (
        pricing.input_cost_per_token * input_tokens
        + pricing.output_cost_per_token * output_tokens
    )


def get_pricing(provider_type: str, model: str) -> ModelPricing | None:
    """Look up pricing for a specific provider+model combination."""
    return PRICING_REGISTRY.get((provider_type, model))

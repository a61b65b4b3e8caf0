"""
Cost estimation utilities for Answer Visibility.

Estimates USD costs of provider calls from token usage. Prices are stored
per 1,000 tokens, which is the unit historical run costs were computed in.
Unknown models fall back to the default model's rate instead of returning
zero, so budget accounting never silently under-counts a run.

Example:
    >>> from answer_visibility.utils.cost import estimate_cost
    >>> estimate_cost("gpt-4o-mini", prompt_tokens=1000, completion_tokens=1000)
    0.00075
"""

import logging

DEFAULT_COST_MODEL = "gpt-4o-mini"

# USD per 1,000 tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4.1": {"input": 0.002, "output": 0.008},
    "gpt-4.1-mini": {"input": 0.0004, "output": 0.0016},
    "gpt-5": {"input": 0.003, "output": 0.012},
    "gpt-5.1": {"input": 0.0035, "output": 0.014},
}

logger = logging.getLogger(__name__)


def get_model_rates(model: str) -> dict[str, float]:
    """Return the per-1K-token rates for a model, or the default rate."""
    rates = MODEL_COSTS.get(model)
    if rates is None:
        logger.debug(
            f"No pricing for model='{model}', using {DEFAULT_COST_MODEL} rates"
        )
        return MODEL_COSTS[DEFAULT_COST_MODEL]
    return rates


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """
    Estimate cost in USD from token counts.

    Args:
        model: Model identifier (e.g., "gpt-4o-mini")
        prompt_tokens: Number of input tokens
        completion_tokens: Number of output tokens

    Returns:
        float: Estimated cost in USD, rounded to 8 decimal places.

    Examples:
        >>> estimate_cost("gpt-4o", 2000, 500)
        0.01
        >>> # Unknown model uses the gpt-4o-mini rate
        >>> estimate_cost("unknown-model", 1000, 0)
        0.00015
    """
    rates = get_model_rates(model)
    cost = (prompt_tokens / 1000) * rates["input"] + (
        completion_tokens / 1000
    ) * rates["output"]
    return round(cost, 8)

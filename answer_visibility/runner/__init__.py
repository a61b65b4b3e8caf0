"""Prompt execution: the single-run pipeline and the on-demand path."""

from .prompt_runner import (
    PromptRunner,
    RunPromptResult,
    apply_run_usage,
    run_prompt_on_demand,
    run_prompt_once,
)

__all__ = [
    "PromptRunner",
    "RunPromptResult",
    "apply_run_usage",
    "run_prompt_on_demand",
    "run_prompt_once",
]

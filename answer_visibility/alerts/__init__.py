"""Alert rule evaluation and visibility recommendations."""

from .evaluator import evaluate_alerts_for_run, evaluate_budget_alert
from .recommendations import generate_recommendations

__all__ = [
    "evaluate_alerts_for_run",
    "evaluate_budget_alert",
    "generate_recommendations",
]

"""Deterministic visibility scoring."""

from .visibility import ScoreBreakdown, citation_bonus, compute_visibility_score

__all__ = ["ScoreBreakdown", "citation_bonus", "compute_visibility_score"]

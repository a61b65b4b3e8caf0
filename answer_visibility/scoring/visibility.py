"""
Visibility score for a brand on one run.

    mention_score   = min(brand_mention_count * 20, 60)
    sentiment_bonus = +20 positive, -10 negative, 0 neutral
    citation_bonus  = +20 if any cited domain contains the brand domain
    score           = clamp(sum, 0, 100)

Pure functions of the extraction result and the brand domain. Historical
scores and the dashboard breakdown depend on these exact constants.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from answer_visibility.extractor.models import CitedDomain, ExtractionResult

MENTION_POINTS = 20
MAX_MENTION_SCORE = 60
POSITIVE_BONUS = 20
NEGATIVE_PENALTY = -10
CITATION_BONUS = 20

SENTIMENT_SCORES = {"positive": 0.5, "negative": -0.5, "neutral": 0.0}


@dataclass
class ScoreBreakdown:
    """Components of one visibility score."""

    mention_score: int
    sentiment_bonus: int
    citation_bonus: int
    score: int

    @property
    def sentiment_score(self) -> float:
        if self.sentiment_bonus > 0:
            return SENTIMENT_SCORES["positive"]
        if self.sentiment_bonus < 0:
            return SENTIMENT_SCORES["negative"]
        return SENTIMENT_SCORES["neutral"]


def mention_score(brand_mention_count: int) -> int:
    return min(brand_mention_count * MENTION_POINTS, MAX_MENTION_SCORE)


def sentiment_bonus(sentiment: str) -> int:
    if sentiment == "positive":
        return POSITIVE_BONUS
    if sentiment == "negative":
        return NEGATIVE_PENALTY
    return 0


def citation_bonus(cited_domains: Iterable[CitedDomain], brand_domain: str | None) -> int:
    """
    Bonus when any cited domain contains the brand's domain.

    Containment is a substring test, so "blog.acme.com" matches "acme.com".
    No registered domain means no bonus.

    Examples:
        >>> citation_bonus([CitedDomain("blog.acme.com", 1)], "www.acme.com")
        20
        >>> citation_bonus([CitedDomain("acme.com", 1)], None)
        0
    """
    if not brand_domain:
        return 0
    needle = re.sub(r"^www\.", "", brand_domain)
    if any(needle in d.domain for d in cited_domains):
        return CITATION_BONUS
    return 0


def compute_visibility_score(
    extraction: ExtractionResult, brand_domain: str | None = None
) -> ScoreBreakdown:
    """
    Score an extraction result for a brand.

    Examples:
        >>> compute_visibility_score(
        ...     ExtractionResult(True, 5, sentiment="positive")
        ... ).score
        80
        >>> compute_visibility_score(
        ...     ExtractionResult(False, 0, sentiment="negative")
        ... ).score
        0
    """
    mentions = mention_score(extraction.brand_mention_count)
    sentiment = sentiment_bonus(extraction.sentiment)
    citation = citation_bonus(extraction.cited_domains, brand_domain)
    total = max(0, min(100, mentions + sentiment + citation))
    return ScoreBreakdown(
        mention_score=mentions,
        sentiment_bonus=sentiment,
        citation_bonus=citation,
        score=total,
    )

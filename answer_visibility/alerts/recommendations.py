"""
Visibility recommendations for Answer Visibility.

Reads the same run series as the alert evaluator (the project's 50 most
recent runs) and turns it into:
- gap analysis: the top 5 competitors by mentions, each with its lead over
  the brand and a priority (high above 5, medium above 2, else low)
- top cited domains with the topics they were cited for
- recommendation items (missing brand citations, the largest competitor
  gap, thinly covered topics, low overall visibility)

Everything here is deterministic; no model is called.

Example:
    >>> result = generate_recommendations(repo, project.id)
    >>> result.gap_analysis[0].to_dict()
    {'topic': 'Globex visibility', 'yourBrandScore': 2, 'competitorScore': 9,
     'gap': 7, 'opportunity': '...', 'priority': 'high'}
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from answer_visibility.extractor.models import ExtractionResult
from answer_visibility.storage.models import Brand
from answer_visibility.storage.repository import Repository

RUN_LIMIT = 50
TOP_COMPETITORS = 5
TOP_DOMAINS = 5
TOP_TOPICS = 3
MAX_UNDERREPRESENTED_COUNT = 2
LOW_VISIBILITY_MENTIONS = 3
LOW_VISIBILITY_MIN_RUNS = 5

Priority = Literal["high", "medium", "low"]
RecommendationType = Literal["gap", "citation", "topic"]

logger = logging.getLogger(__name__)


def gap_priority(gap: int) -> Priority:
    """
    Priority for a competitor's lead over the brand.

    Examples:
        >>> [gap_priority(g) for g in (6, 5, 3, 2, 1)]
        ['high', 'medium', 'medium', 'low', 'low']
    """
    if gap > 5:
        return "high"
    if gap > 2:
        return "medium"
    return "low"


@dataclass
class GapAnalysis:
    competitor: str
    your_brand_score: int
    competitor_score: int
    gap: int
    opportunity: str
    priority: Priority

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": f"{self.competitor} visibility",
            "yourBrandScore": self.your_brand_score,
            "competitorScore": self.competitor_score,
            "gap": self.gap,
            "opportunity": self.opportunity,
            "priority": self.priority,
        }


@dataclass
class Recommendation:
    type: RecommendationType
    title: str
    description: str
    priority: Priority
    action_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "actionItems": list(self.action_items),
        }


@dataclass
class CitedDomainSummary:
    """A domain's total citations across runs and the topics of those runs."""

    domain: str
    count: int = 0
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"domain": self.domain, "count": self.count, "topics": list(self.topics)}


@dataclass
class RecommendationsResult:
    gap_analysis: list[GapAnalysis] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    top_cited_domains: list[CitedDomainSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gapAnalysis": [g.to_dict() for g in self.gap_analysis],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "topCitedDomains": [d.to_dict() for d in self.top_cited_domains],
        }


SETUP_BRAND = Recommendation(
    type="gap",
    title="Set up your brand first",
    description=(
        "Add a brand to this project to start getting visibility recommendations."
    ),
    priority="high",
    action_items=[
        "Go to project settings and add your brand name",
        "Include your website domain for better tracking",
        "Add brand synonyms if your brand has alternate names",
    ],
)


@dataclass
class _MentionTotals:
    run_count: int = 0
    brand_mentions: int = 0
    competitors: dict[str, int] = field(default_factory=dict)
    topics: dict[str, int] = field(default_factory=dict)
    domains: dict[str, CitedDomainSummary] = field(default_factory=dict)

    def add(self, mentions: ExtractionResult) -> None:
        if mentions.brand_mentioned:
            self.brand_mentions += mentions.brand_mention_count or 1
        for comp in mentions.competitor_mentions:
            self.competitors[comp.name] = (
                self.competitors.get(comp.name, 0) + comp.count
            )
        for topic in mentions.topics:
            self.topics[topic] = self.topics.get(topic, 0) + 1
        for cited in mentions.cited_domains:
            summary = self.domains.setdefault(
                cited.domain, CitedDomainSummary(cited.domain)
            )
            summary.count += cited.count
            for topic in mentions.topics:
                if topic not in summary.topics:
                    summary.topics.append(topic)


def _top(counts: dict[str, int], n: int) -> list[tuple[str, int]]:
    # sorted() is stable, so ties keep first-seen order
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)[:n]


def _aggregate(repo: Repository, project_id: str) -> _MentionTotals:
    totals = _MentionTotals()
    for run in repo.get_prompt_runs_by_project(project_id, RUN_LIMIT):
        totals.run_count += 1
        if run.parsed_mentions:
            totals.add(ExtractionResult.from_dict(run.parsed_mentions))
    return totals


def _brand_is_cited(brand: Brand, domains: list[CitedDomainSummary]) -> bool:
    name = brand.name.lower()
    own_domain = (brand.domain or "").lower()
    return any(
        name in d.domain or (own_domain and own_domain in d.domain) for d in domains
    )


def _gap_analysis(brand: Brand, totals: _MentionTotals) -> list[GapAnalysis]:
    gaps = []
    for name, count in _top(totals.competitors, TOP_COMPETITORS):
        gap = count - totals.brand_mentions
        if gap <= 0:
            continue
        gaps.append(
            GapAnalysis(
                competitor=name,
                your_brand_score=totals.brand_mentions,
                competitor_score=count,
                gap=gap,
                opportunity=(
                    f"{name} is mentioned {gap} more times. Consider creating "
                    f"content that positions {brand.name} alongside {name}."
                ),
                priority=gap_priority(gap),
            )
        )
    return gaps


def generate_recommendations(
    repo: Repository, project_id: str
) -> RecommendationsResult:
    """
    Build gap analysis, top cited domains and recommendations for a project.

    The project's first brand is the one analysed. A project without a
    brand gets a single "set up your brand" recommendation.

    Args:
        repo: Repository
        project_id: Project to analyse

    Returns:
        RecommendationsResult
    """
    brands = repo.get_brands_by_project(project_id)
    if not brands:
        return RecommendationsResult(recommendations=[SETUP_BRAND])
    brand = brands[0]

    totals = _aggregate(repo, project_id)
    gaps = _gap_analysis(brand, totals)
    top_domains = [
        summary
        for _, summary in sorted(
            totals.domains.items(), key=lambda item: item[1].count, reverse=True
        )[:TOP_DOMAINS]
    ]

    recommendations = []
    if top_domains and not _brand_is_cited(brand, top_domains):
        recommendations.append(
            Recommendation(
                type="citation",
                title="Get cited by authoritative sources",
                description=(
                    "Your brand is not appearing in the top cited sources. The most "
                    "cited domains are: "
                    f"{', '.join(d.domain for d in top_domains[:3])}."
                ),
                priority="high",
                action_items=[
                    "Create authoritative content that other sites will reference",
                    "Pitch guest posts to high-authority domains",
                    "Build backlinks from industry publications",
                    "Update your website with comprehensive, citable information",
                ],
            )
        )

    if gaps:
        top_gap = gaps[0]
        recommendations.append(
            Recommendation(
                type="gap",
                title=f"Close the gap with {top_gap.competitor}",
                description=top_gap.opportunity,
                priority=top_gap.priority,
                action_items=[
                    "Create comparison content: "
                    f'"{brand.name} vs {top_gap.competitor}"',
                    "Highlight unique differentiators in your messaging",
                    "Target the same search queries as competitors",
                    "Improve brand presence in industry discussions",
                ],
            )
        )

    underrepresented = [
        topic
        for topic, count in totals.topics.items()
        if count <= MAX_UNDERREPRESENTED_COUNT
    ][:TOP_TOPICS]
    if underrepresented:
        recommendations.append(
            Recommendation(
                type="topic",
                title="Expand topic coverage",
                description=(
                    "Your brand has limited visibility in these topics: "
                    f"{', '.join(underrepresented)}. Creating content around these "
                    "topics could improve AI visibility."
                ),
                priority="medium",
                action_items=[
                    f'Create comprehensive content about "{topic}"'
                    for topic in underrepresented
                ],
            )
        )

    if (
        totals.brand_mentions < LOW_VISIBILITY_MENTIONS
        and totals.run_count >= LOW_VISIBILITY_MIN_RUNS
    ):
        recommendations.append(
            Recommendation(
                type="gap",
                title="Improve overall brand visibility",
                description=(
                    f"Your brand was only mentioned {totals.brand_mentions} times "
                    f"across {totals.run_count} AI queries. This indicates low "
                    "visibility."
                ),
                priority="high",
                action_items=[
                    "Create more content that AI systems can reference",
                    "Ensure your website has clear, structured information",
                    "Build authority through backlinks and citations",
                    "Target informational queries where AI provides recommendations",
                ],
            )
        )

    logger.info(
        f"Recommendations for project {project_id}: {len(gaps)} gap(s), "
        f"{len(recommendations)} recommendation(s) from {totals.run_count} run(s)"
    )
    return RecommendationsResult(
        gap_analysis=gaps,
        recommendations=recommendations,
        top_cited_domains=top_domains,
    )

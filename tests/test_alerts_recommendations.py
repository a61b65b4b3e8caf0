"""
Tests for alerts.recommendations module.

Tests cover:
- Gap priorities and competitor gap analysis
- Top cited domains with their topics
- Citation, gap, topic and low-visibility recommendations
- Projects without a brand
"""

import pytest

from answer_visibility.alerts.recommendations import (
    RUN_LIMIT,
    gap_priority,
    generate_recommendations,
)


def _mentions(count=0, competitors=(), domains=(), topics=()):
    return {
        "brandMentioned": count > 0,
        "brandMentionCount": count,
        "competitorMentions": [
            {"id": "", "name": name, "count": n} for name, n in competitors
        ],
        "citedDomains": [{"domain": d, "count": 1, "urls": []} for d in domains],
        "sentiment": "neutral",
        "topics": list(topics),
        "extractionMethod": "regex",
    }


@pytest.fixture
def prompt(repo, seeded):
    return repo.create_prompt(seeded.project.id, "Best CRM", "What is the best CRM?")


@pytest.fixture
def make_run(repo, prompt):
    def _make(mentions):
        run = repo.create_prompt_run(prompt.id, "mock", None)
        return repo.complete_prompt_run(
            run.id,
            raw_response="answer",
            parsed_mentions=mentions,
            response_metadata={},
            cost=None,
        )

    return _make


@pytest.mark.parametrize(
    "gap,expected",
    [(9, "high"), (6, "high"), (5, "medium"), (3, "medium"), (2, "low"), (1, "low")],
)
def test_gap_priority(gap, expected):
    assert gap_priority(gap) == expected


class TestGenerateRecommendations:
    """Test suite for generate_recommendations()."""

    @pytest.fixture
    def competitive_history(self, make_run):
        make_run(
            _mentions(
                1,
                competitors=[("Globex", 4), ("Initech", 2)],
                domains=["g2.com"],
                topics=["pricing"],
            )
        )
        make_run(
            _mentions(
                1,
                competitors=[("Globex", 5), ("Initech", 1)],
                domains=["g2.com", "capterra.com"],
                topics=["pricing", "integrations"],
            )
        )

    def test_gap_analysis_ranks_competitors(self, repo, seeded, competitive_history):
        result = generate_recommendations(repo, seeded.project.id)

        gaps = [g.to_dict() for g in result.gap_analysis]
        assert gaps == [
            {
                "topic": "Globex visibility",
                "yourBrandScore": 2,
                "competitorScore": 9,
                "gap": 7,
                "opportunity": (
                    "Globex is mentioned 7 more times. Consider creating content "
                    "that positions Acme Corp alongside Globex."
                ),
                "priority": "high",
            },
            {
                "topic": "Initech visibility",
                "yourBrandScore": 2,
                "competitorScore": 3,
                "gap": 1,
                "opportunity": (
                    "Initech is mentioned 1 more times. Consider creating content "
                    "that positions Acme Corp alongside Initech."
                ),
                "priority": "low",
            },
        ]

    def test_top_cited_domains_carry_topics(self, repo, seeded, competitive_history):
        result = generate_recommendations(repo, seeded.project.id)

        assert [d.to_dict() for d in result.top_cited_domains] == [
            {"domain": "g2.com", "count": 2, "topics": ["pricing", "integrations"]},
            {
                "domain": "capterra.com",
                "count": 1,
                "topics": ["pricing", "integrations"],
            },
        ]

    def test_recommendations_for_competitive_history(
        self, repo, seeded, competitive_history
    ):
        result = generate_recommendations(repo, seeded.project.id)

        citation, gap, topic = result.recommendations
        assert citation.type == "citation"
        assert citation.priority == "high"
        assert citation.description.endswith(
            "The most cited domains are: g2.com, capterra.com."
        )
        assert gap.type == "gap"
        assert gap.title == "Close the gap with Globex"
        assert gap.priority == "high"
        assert gap.action_items[0] == 'Create comparison content: "Acme Corp vs Globex"'
        assert topic.type == "topic"
        assert topic.priority == "medium"
        assert topic.action_items == [
            'Create comprehensive content about "pricing"',
            'Create comprehensive content about "integrations"',
        ]

    def test_no_citation_recommendation_when_brand_domain_cited(
        self, repo, seeded, make_run
    ):
        make_run(_mentions(2, domains=["g2.com", "acme.com"]))

        result = generate_recommendations(repo, seeded.project.id)

        assert "citation" not in [r.type for r in result.recommendations]

    def test_no_gap_when_brand_leads(self, repo, seeded, make_run):
        make_run(_mentions(10, competitors=[("Globex", 3)]))

        result = generate_recommendations(repo, seeded.project.id)

        assert result.gap_analysis == []
        assert result.recommendations == []

    def test_brand_mentioned_without_count_counts_once(self, repo, seeded, make_run):
        make_run(
            {
                "brandMentioned": True,
                "competitorMentions": [{"id": "", "name": "Globex", "count": 4}],
            }
        )

        [gap] = generate_recommendations(repo, seeded.project.id).gap_analysis

        assert gap.your_brand_score == 1
        assert gap.gap == 3
        assert gap.priority == "medium"

    def test_low_visibility_counts_failed_runs(self, repo, seeded, prompt, make_run):
        for _ in range(4):
            make_run(_mentions(0))
        failed = repo.create_prompt_run(prompt.id, "mock", None)
        repo.fail_prompt_run(failed.id, "upstream 503")

        result = generate_recommendations(repo, seeded.project.id)

        [rec] = result.recommendations
        assert rec.title == "Improve overall brand visibility"
        assert rec.description == (
            "Your brand was only mentioned 0 times across 5 AI queries. "
            "This indicates low visibility."
        )

    def test_no_low_visibility_warning_below_five_runs(self, repo, seeded, make_run):
        for _ in range(4):
            make_run(_mentions(0))

        assert generate_recommendations(repo, seeded.project.id).recommendations == []

    def test_only_recent_runs_are_read(self, repo, seeded, make_run):
        make_run(_mentions(0, competitors=[("Globex", 100)]))
        for _ in range(RUN_LIMIT):
            make_run(_mentions(1))

        result = generate_recommendations(repo, seeded.project.id)

        assert result.gap_analysis == []

    def test_project_without_brand(self, repo, seeded):
        project = repo.create_project(seeded.org.id, "No Brand")

        result = generate_recommendations(repo, project.id)

        assert result.gap_analysis == []
        assert result.top_cited_domains == []
        [rec] = result.recommendations
        assert rec.title == "Set up your brand first"
        assert result.to_dict()["recommendations"][0]["actionItems"][0] == (
            "Go to project settings and add your brand name"
        )

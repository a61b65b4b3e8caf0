"""
Extraction result models.

Both extraction strategies produce an ExtractionResult. The dict form
(to_dict/from_dict) uses camelCase keys because it is stored verbatim in
prompt_runs.parsed_mentions and read back by the alert evaluator.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

Sentiment = Literal["positive", "neutral", "negative"]
ExtractionMethod = Literal["llm", "regex"]


@dataclass
class CompetitorMention:
    """
    Mention count for one competitor.

    id is "" when the LLM strategy reports a name that does not match any
    known competitor.
    """

    id: str
    name: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "count": self.count}


@dataclass
class CitedDomain:
    """A domain cited in an answer with its citation count and unique URLs."""

    domain: str
    count: int
    urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"domain": self.domain, "count": self.count, "urls": list(self.urls)}


@dataclass
class ExtractionResult:
    """
    Structured signals extracted from one answer.

    Attributes:
        brand_mentioned: True if any brand term was found
        brand_mention_count: Total mentions of all brand names and synonyms
        competitor_mentions: Mentioned competitors, highest count first
        cited_domains: Cited domains, highest count first
        sentiment: Overall sentiment toward the brand
        topics: Up to 5 topics discussed
        extraction_method: "llm" or "regex"
    """

    brand_mentioned: bool
    brand_mention_count: int
    competitor_mentions: list[CompetitorMention] = field(default_factory=list)
    cited_domains: list[CitedDomain] = field(default_factory=list)
    sentiment: Sentiment = "neutral"
    topics: list[str] = field(default_factory=list)
    extraction_method: ExtractionMethod = "regex"

    def to_dict(self) -> dict[str, Any]:
        return {
            "brandMentioned": self.brand_mentioned,
            "brandMentionCount": self.brand_mention_count,
            "competitorMentions": [m.to_dict() for m in self.competitor_mentions],
            "citedDomains": [d.to_dict() for d in self.cited_domains],
            "sentiment": self.sentiment,
            "topics": list(self.topics),
            "extractionMethod": self.extraction_method,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionResult":
        """Rebuild a result from stored parsed_mentions; missing keys get defaults."""
        return cls(
            brand_mentioned=bool(data.get("brandMentioned", False)),
            brand_mention_count=data.get("brandMentionCount") or 0,
            competitor_mentions=[
                CompetitorMention(
                    id=m.get("id", ""), name=m.get("name", ""), count=m.get("count", 0)
                )
                for m in data.get("competitorMentions") or []
            ],
            cited_domains=[
                CitedDomain(
                    domain=d.get("domain", ""),
                    count=d.get("count", 0),
                    urls=list(d.get("urls") or []),
                )
                for d in data.get("citedDomains") or []
            ],
            sentiment=data.get("sentiment", "neutral"),
            topics=list(data.get("topics") or []),
            extraction_method=data.get("extractionMethod", "regex"),
        )

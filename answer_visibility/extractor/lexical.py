"""
Deterministic lexical extraction.

Counts brand and competitor mentions, groups cited URLs by domain,
classifies sentiment around brand mentions and infers topics, using only
regular expressions and fixed keyword lists. Always succeeds.

Matching works on normalized text (lowercase, alphanumerics and single
spaces only) with word boundaries, so "hub" never matches inside "github".
A multi-word term counts as many times as its least frequent word, which
requires every word to be present without requiring the exact phrase.

Example:
    >>> result = extract_from_response(
    ...     "Acme Corp is great. Acme provides service.",
    ...     brands=[Brand(..., name="Acme Corp", synonyms=["Acme"])],
    ...     competitors=[],
    ... )
    >>> result.brand_mention_count
    3
"""

import re
from collections.abc import Iterable, Sequence
from typing import Protocol
from urllib.parse import urlsplit

from .models import CitedDomain, CompetitorMention, ExtractionResult, Sentiment

URL_PATTERN = re.compile(r"https?://[^\s\)>\]\"']+", re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r"[.,;:!?]+$")

SENTIMENT_WINDOW = 100

POSITIVE_WORDS = (
    "best",
    "excellent",
    "great",
    "recommended",
    "popular",
    "leading",
    "top",
    "trusted",
    "reliable",
    "powerful",
    "innovative",
    "outstanding",
    "superior",
    "preferred",
)

NEGATIVE_WORDS = (
    "worst",
    "bad",
    "poor",
    "avoid",
    "limited",
    "outdated",
    "expensive",
    "unreliable",
    "complicated",
    "difficult",
    "lacks",
    "missing",
    "weak",
)

MAX_TOPICS = 5

TOPIC_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bpric(e|ing|es)\b", re.IGNORECASE), "pricing"),
    (re.compile(r"\bfeature(s)?\b", re.IGNORECASE), "features"),
    (re.compile(r"\bcompar(e|ison|ing)\b", re.IGNORECASE), "comparison"),
    (re.compile(r"\breview(s)?\b", re.IGNORECASE), "reviews"),
    (re.compile(r"\balternative(s)?\b", re.IGNORECASE), "alternatives"),
    (re.compile(r"\bintegrat(e|ion|ions)\b", re.IGNORECASE), "integrations"),
    (re.compile(r"\bsupport\b", re.IGNORECASE), "support"),
    (re.compile(r"\bsecurity\b", re.IGNORECASE), "security"),
    (re.compile(r"\bperformance\b", re.IGNORECASE), "performance"),
    (re.compile(r"\bease of use|user.friendly|usability\b", re.IGNORECASE), "usability"),
]


class NamedEntity(Protocol):
    """Anything with a name and synonyms (storage Brand and Competitor)."""

    name: str
    synonyms: list[str]


def entity_terms(entities: Iterable[NamedEntity]) -> list[str]:
    """Flatten names and synonyms, name first, in entity order."""
    terms: list[str] = []
    for entity in entities:
        terms.append(entity.name)
        terms.extend(entity.synonyms or [])
    return terms


def normalize_text(text: str) -> str:
    """
    Lowercase, replace non-alphanumerics with spaces and collapse whitespace.

    Examples:
        >>> normalize_text("  Acme-Corp's  BEST!! ")
        'acme corp s best'
    """
    text = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def _count_word(normalized_text: str, word: str) -> int:
    return len(re.findall(r"\b" + re.escape(word) + r"\b", normalized_text))


def count_mentions(text: str, terms: Iterable[str]) -> int:
    """
    Count whole-word occurrences of every term in text, summed over terms.

    Examples:
        >>> count_mentions("HubSpot is not GitHub. hubspot!", ["HubSpot", "hub"])
        2
    """
    normalized_text = normalize_text(text)
    count = 0
    for term in terms:
        words = normalize_text(term).split()
        if not words:
            continue
        count += min(_count_word(normalized_text, word) for word in words)
    return count


def extract_urls(text: str) -> list[str]:
    """All http(s) URLs in text with trailing punctuation stripped."""
    return [TRAILING_PUNCTUATION.sub("", url) for url in URL_PATTERN.findall(text)]


def url_domain(url: str) -> str | None:
    """Hostname of url without a leading 'www.', or None if it has none."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return re.sub(r"^www\.", "", hostname)


def group_domains(urls: Iterable[str]) -> list[CitedDomain]:
    """
    Group URLs by domain, counting every URL and keeping unique URLs.

    Unparseable URLs are skipped. Highest count first; ties keep first-seen
    order.

    Examples:
        >>> group_domains(["https://example.com/a", "https://www.example.com/b"])
        [CitedDomain(domain='example.com', count=2, urls=['https://example.com/a', 'https://www.example.com/b'])]
    """
    domains: dict[str, CitedDomain] = {}
    for url in urls:
        domain = url_domain(url)
        if domain is None:
            continue
        entry = domains.get(domain)
        if entry is None:
            domains[domain] = CitedDomain(domain=domain, count=1, urls=[url])
        else:
            entry.count += 1
            if url not in entry.urls:
                entry.urls.append(url)
    return sorted(domains.values(), key=lambda d: d.count, reverse=True)


def analyze_sentiment(text: str, brand_terms: Sequence[str]) -> Sentiment:
    """
    Classify sentiment from keywords near the first occurrence of each brand term.

    Keywords are counted once per window (substring presence). Positive needs
    a margin of more than one keyword over negative, and vice versa;
    anything closer is neutral.
    """
    normalized_text = normalize_text(text)
    positive = 0
    negative = 0

    for term in brand_terms:
        normalized_term = normalize_text(term)
        if not normalized_term:
            continue
        index = normalized_text.find(normalized_term)
        if index == -1:
            continue

        start = max(0, index - SENTIMENT_WINDOW)
        end = min(len(normalized_text), index + len(term) + SENTIMENT_WINDOW)
        window = normalized_text[start:end]

        positive += sum(1 for word in POSITIVE_WORDS if word in window)
        negative += sum(1 for word in NEGATIVE_WORDS if word in window)

    if positive > negative + 1:
        return "positive"
    if negative > positive + 1:
        return "negative"
    return "neutral"


def infer_topics(text: str) -> list[str]:
    """
    Match text against the fixed topic vocabulary, at most 5 topics.

    Examples:
        >>> infer_topics("Compare pricing and integrations")
        ['pricing', 'comparison', 'integrations']
    """
    topics: list[str] = []
    for pattern, topic in TOPIC_PATTERNS:
        if pattern.search(text) and topic not in topics:
            topics.append(topic)
        if len(topics) >= MAX_TOPICS:
            break
    return topics


def extract_from_response(
    raw_text: str,
    brands: Sequence[NamedEntity],
    competitors: Sequence,
) -> ExtractionResult:
    """
    Run lexical extraction over an answer.

    Args:
        raw_text: Answer text
        brands: Project brands (name + synonyms)
        competitors: Project competitors (id + name + synonyms)

    Returns:
        ExtractionResult with no topics and extraction_method "regex"
    """
    brand_terms = entity_terms(brands)
    brand_mention_count = count_mentions(raw_text, brand_terms)

    competitor_mentions = []
    for competitor in competitors:
        count = count_mentions(raw_text, entity_terms([competitor]))
        if count > 0:
            competitor_mentions.append(
                CompetitorMention(id=competitor.id, name=competitor.name, count=count)
            )
    competitor_mentions.sort(key=lambda m: m.count, reverse=True)

    return ExtractionResult(
        brand_mentioned=brand_mention_count > 0,
        brand_mention_count=brand_mention_count,
        competitor_mentions=competitor_mentions,
        cited_domains=group_domains(extract_urls(raw_text)),
        sentiment=analyze_sentiment(raw_text, brand_terms),
        extraction_method="regex",
    )

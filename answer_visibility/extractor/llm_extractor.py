"""
LLM-assisted extraction strategy.

Sends the answer to a chat model with a fixed JSON schema, validates the
reply and converts it to an ExtractionResult. Every failure (transport,
missing JSON, wrong shape) surfaces as ExtractionError; FallbackExtractor
turns that into lexical extraction.
"""

import json
import logging
import math
import re
from collections.abc import Sequence
from typing import Any

from answer_visibility.exceptions import ExtractionError
from answer_visibility.providers.openai_client import OpenAIChatClient

from .lexical import entity_terms, group_domains
from .models import CompetitorMention, ExtractionResult
from .prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
VALID_SENTIMENTS = ("positive", "negative", "neutral", "mixed")
MAX_TOPICS = 5

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_extraction_response(data: Any) -> dict[str, Any]:
    """
    Validate and normalize a decoded extraction reply.

    Required fields must have the right types; items of the list fields
    that do not conform are dropped.

    Raises:
        ValueError: If data is not an object or a required field is missing
            or has the wrong type
    """
    if not isinstance(data, dict):
        raise ValueError("Extraction response must be a JSON object")

    if not isinstance(data.get("brandMentioned"), bool):
        raise ValueError("brandMentioned must be a boolean")
    if not _is_number(data.get("brandMentionCount")):
        raise ValueError("brandMentionCount must be a number")
    for key in ("competitorMentions", "topics", "citedUrls"):
        if not isinstance(data.get(key), list):
            raise ValueError(f"{key} must be an array")
    if data.get("sentiment") not in VALID_SENTIMENTS:
        raise ValueError(f"sentiment must be one of {VALID_SENTIMENTS}")

    return {
        "brandMentioned": data["brandMentioned"],
        "brandMentionCount": max(0, math.floor(data["brandMentionCount"])),
        "competitorMentions": [
            m
            for m in data["competitorMentions"]
            if isinstance(m, dict)
            and isinstance(m.get("name"), str)
            and _is_number(m.get("count"))
        ],
        "topics": [t for t in data["topics"] if isinstance(t, str)][:MAX_TOPICS],
        "sentiment": data["sentiment"],
        "citedUrls": [u for u in data["citedUrls"] if isinstance(u, str)],
    }


def parse_extraction_json(content: str) -> dict[str, Any]:
    """
    Pull the outermost JSON object out of a model reply and validate it.

    Raises:
        ValueError: No JSON object, invalid JSON or invalid shape
    """
    match = JSON_OBJECT_PATTERN.search(content)
    if not match:
        raise ValueError("No JSON object found in extraction response")
    return validate_extraction_response(json.loads(match.group(0)))


def convert_extraction(
    parsed: dict[str, Any], competitors: Sequence
) -> ExtractionResult:
    """Resolve competitor names, group cited URLs and collapse 'mixed' sentiment."""
    mentions = []
    for mention in parsed["competitorMentions"]:
        name = mention["name"].lower()
        match = next(
            (
                c
                for c in competitors
                if c.name.lower() == name
                or any(s.lower() == name for s in c.synonyms or [])
            ),
            None,
        )
        if match is not None:
            mentions.append(
                CompetitorMention(id=match.id, name=match.name, count=mention["count"])
            )
        else:
            mentions.append(
                CompetitorMention(id="", name=mention["name"], count=mention["count"])
            )
    mentions.sort(key=lambda m: m.count, reverse=True)

    sentiment = parsed["sentiment"]
    if sentiment == "mixed":
        sentiment = "neutral"

    return ExtractionResult(
        brand_mentioned=parsed["brandMentioned"],
        brand_mention_count=parsed["brandMentionCount"],
        competitor_mentions=mentions,
        cited_domains=group_domains(parsed["citedUrls"]),
        sentiment=sentiment,
        topics=parsed["topics"],
        extraction_method="llm",
    )


class LLMExtractionStrategy:
    """
    Extraction through one structured chat completion (temperature 0).

    Args:
        client: Chat client bound to the extraction model
        max_tokens: Completion token cap
    """

    name = "llm"

    def __init__(self, client: OpenAIChatClient, max_tokens: int = 500):
        self.client = client
        self.max_tokens = max_tokens

    async def extract(
        self, raw_text: str, brands: Sequence, competitors: Sequence
    ) -> ExtractionResult:
        prompt = build_extraction_prompt(
            raw_text, entity_terms(brands), entity_terms(competitors)
        )
        try:
            completion = await self.client.complete(
                [
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=0,
            )
            parsed = parse_extraction_json(completion.text)
        except Exception as e:
            raise ExtractionError(f"LLM extraction failed: {e}") from e

        logger.info(
            f"LLM extraction successful: brand_mentioned={parsed['brandMentioned']}, "
            f"competitors={len(parsed['competitorMentions'])}, "
            f"topics={len(parsed['topics'])}"
        )
        return convert_extraction(parsed, competitors)

"""
Extraction strategies and the fallback combinator.

Strategies share one async method, extract(raw_text, brands, competitors),
and return an ExtractionResult. FallbackExtractor runs a primary strategy
and, on any exception, the fallback; with the lexical strategy as fallback
the combination never raises.

Example:
    >>> extractor = try_then_fallback(
    ...     LLMExtractionStrategy(client), LexicalExtractionStrategy()
    ... )
    >>> result = await extractor.extract(raw_text, brands, competitors)
    >>> result.extraction_method
    'regex'  # the LLM call failed
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from answer_visibility.config.schema import RuntimeExtractionSettings
from answer_visibility.providers.openai_client import OpenAIChatClient

from .lexical import extract_from_response, infer_topics
from .llm_extractor import LLMExtractionStrategy
from .models import ExtractionResult

logger = logging.getLogger(__name__)


class ExtractionStrategy(Protocol):
    name: str

    async def extract(
        self, raw_text: str, brands: Sequence, competitors: Sequence
    ) -> ExtractionResult: ...


class LexicalExtractionStrategy:
    """Deterministic extraction plus keyword topic inference."""

    name = "lexical"

    async def extract(
        self, raw_text: str, brands: Sequence, competitors: Sequence
    ) -> ExtractionResult:
        result = extract_from_response(raw_text, brands, competitors)
        result.topics = infer_topics(raw_text)
        return result


class FallbackExtractor:
    """
    Try primary; on any exception log a warning and use fallback.

    Attributes:
        primary: Strategy tried first
        fallback: Strategy used when primary raises
    """

    def __init__(self, primary: ExtractionStrategy, fallback: ExtractionStrategy):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def extract(
        self, raw_text: str, brands: Sequence, competitors: Sequence
    ) -> ExtractionResult:
        try:
            return await self.primary.extract(raw_text, brands, competitors)
        except Exception as e:
            logger.warning(
                f"{self.primary.name} extraction failed, falling back to "
                f"{self.fallback.name}: {e}"
            )
            return await self.fallback.extract(raw_text, brands, competitors)


def try_then_fallback(
    primary: ExtractionStrategy, fallback: ExtractionStrategy
) -> FallbackExtractor:
    return FallbackExtractor(primary, fallback)


def build_extractor(
    settings: RuntimeExtractionSettings | None = None,
) -> ExtractionStrategy:
    """
    Build the extractor for the configured method.

    "llm" with an API key gives LLM extraction with lexical fallback;
    "lexical", or "llm" without a key, gives lexical extraction only.
    """
    if settings is None or settings.method == "lexical":
        return LexicalExtractionStrategy()

    if not settings.api_key:
        logger.warning("No API key for LLM extraction, using lexical extraction")
        return LexicalExtractionStrategy()

    client = OpenAIChatClient(settings.model_name, settings.api_key)
    return try_then_fallback(
        LLMExtractionStrategy(client, max_tokens=settings.max_tokens),
        LexicalExtractionStrategy(),
    )

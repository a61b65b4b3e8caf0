"""
Extraction engine for Answer Visibility.

Turns raw answer text into mention counts, cited domains, sentiment and
topics. Lexical extraction is always available; LLM-assisted extraction
falls back to it on any failure.
"""

from .lexical import extract_from_response, infer_topics
from .llm_extractor import LLMExtractionStrategy, validate_extraction_response
from .models import CitedDomain, CompetitorMention, ExtractionResult
from .strategies import (
    ExtractionStrategy,
    FallbackExtractor,
    LexicalExtractionStrategy,
    build_extractor,
    try_then_fallback,
)

__all__ = [
    "CitedDomain",
    "CompetitorMention",
    "ExtractionResult",
    "ExtractionStrategy",
    "FallbackExtractor",
    "LLMExtractionStrategy",
    "LexicalExtractionStrategy",
    "build_extractor",
    "extract_from_response",
    "infer_topics",
    "try_then_fallback",
    "validate_extraction_response",
]

"""
Answer providers for Answer Visibility.

get_provider_adapter() is the single place provider names are mapped to
adapter classes.
"""

from answer_visibility.config.constants import DEFAULT_MODEL
from answer_visibility.config.schema import RuntimeProvider
from answer_visibility.exceptions import UnsupportedProviderError

from .mock_adapter import MockProviderAdapter
from .models import (
    ParsedCitation,
    ProviderAdapter,
    ProviderContext,
    ProviderResponse,
    TokenUsage,
)
from .openai_adapter import OpenAIAdapter, extract_citations_from_text
from .openai_client import OpenAIChatClient

SUPPORTED_PROVIDERS = ("openai", "mock")


def get_provider_adapter(
    provider: str,
    model: str | None = None,
    settings: RuntimeProvider | None = None,
) -> ProviderAdapter:
    """
    Build the adapter for a provider name.

    Args:
        provider: Provider name (e.g., "openai")
        model: Model override; falls back to settings.model_name, then the
            default model
        settings: Resolved provider settings (API key, base URL)

    Raises:
        UnsupportedProviderError: Unknown provider name
        ValueError: Missing API key for a real provider
    """
    if provider == "openai":
        api_key = settings.api_key if settings else None
        if not api_key:
            raise ValueError("OpenAI provider requires an API key")
        model_name = model or (settings.model_name if settings else DEFAULT_MODEL)
        client = OpenAIChatClient(model_name, api_key, settings.base_url)
        return OpenAIAdapter(client)

    if provider == "mock":
        return MockProviderAdapter(
            model=model or (settings.model_name if settings else "mock-model")
        )

    raise UnsupportedProviderError(f"Unsupported provider: {provider}")


__all__ = [
    "SUPPORTED_PROVIDERS",
    "MockProviderAdapter",
    "OpenAIAdapter",
    "OpenAIChatClient",
    "ParsedCitation",
    "ProviderAdapter",
    "ProviderContext",
    "ProviderResponse",
    "TokenUsage",
    "extract_citations_from_text",
    "get_provider_adapter",
]

"""
Provider adapter contract for Answer Visibility.

The prompt runner talks to language-model providers only through this
module's Protocol and dataclasses. A new provider is added by writing a
class that satisfies ProviderAdapter and registering it in
providers.get_provider_adapter; nothing else changes.

Key components:
- ProviderContext: Brand/competitor vocabulary used to bias the system prompt
- ParsedCitation: One URL surfaced by an answer
- TokenUsage: Prompt/completion/total token counts
- ProviderResponse: Raw answer text plus optional citations, usage and cost
- ProviderAdapter: Protocol every adapter implements

Example:
    >>> adapter = get_provider_adapter("openai", "gpt-4o-mini", settings)
    >>> response = await adapter.run_prompt(
    ...     "What are the best CRM tools?",
    ...     ProviderContext(brand_names=["Acme"], competitor_names=["Globex"]),
    ... )
    >>> response.cost_estimate
    0.00042
"""

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class ProviderContext:
    """
    Context passed alongside the prompt.

    The adapter may mention these names in its system instructions; nothing
    guarantees they appear in the answer.
    """

    brand_names: list[str] = field(default_factory=list)
    competitor_names: list[str] = field(default_factory=list)
    locale: str = "en"


@dataclass
class ParsedCitation:
    """
    A URL surfaced by a provider answer.

    Attributes:
        position: 1-based order of appearance in the answer
        url: URL with trailing punctuation stripped
        domain: Hostname without a leading 'www.' (None if unparseable)
        title: Page title, when the provider exposes it
        snippet: Quoted snippet, when the provider exposes it
    """

    position: int
    url: str | None = None
    domain: str | None = None
    title: str | None = None
    snippet: str | None = None


@dataclass
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def to_dict(self) -> dict[str, int]:
        """Serialize with the camelCase keys stored in run metadata."""
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ProviderResponse:
    """
    Result of one adapter call.

    Attributes:
        raw_text: Complete answer text (may be empty)
        citations: Citations the adapter exposed, in order
        usage: Token usage, when the provider reported it
        cost_estimate: Estimated USD cost, when usage is known
    """

    raw_text: str
    citations: list[ParsedCitation] = field(default_factory=list)
    usage: TokenUsage | None = None
    cost_estimate: float | None = None


class ProviderAdapter(Protocol):
    """
    Provider-agnostic interface for answer providers.

    Implementations MUST:
    - Use async/await for network calls
    - Raise on any network or provider error (the prompt runner catches it)
    - Never log API keys
    """

    name: str

    async def run_prompt(
        self, prompt_text: str, context: ProviderContext | None = None
    ) -> ProviderResponse:
        """Send prompt_text to the provider and return its answer."""
        ...

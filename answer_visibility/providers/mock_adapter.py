"""
Mock provider adapter for local runs and tests.

Implements the ProviderAdapter protocol without network calls. Answers are
looked up by prompt text; unknown prompts get an answer built from the
context's brand and competitor names so the downstream extraction has
something to find.

Example:
    >>> adapter = MockProviderAdapter(
    ...     responses={"best CRM": "Acme is the best CRM. https://acme.com"}
    ... )
    >>> response = await adapter.run_prompt("best CRM")
    >>> response.citations[0].domain
    'acme.com'
"""

import logging
from dataclasses import dataclass, field

from .models import ProviderContext, ProviderResponse, TokenUsage
from .openai_adapter import extract_citations_from_text

logger = logging.getLogger(__name__)


@dataclass
class MockProviderAdapter:
    """
    Deterministic ProviderAdapter.

    Attributes:
        responses: Prompt text -> canned answer
        default_response: Answer for unknown prompts; None builds one from
            the context
        tokens_per_response: Total tokens reported per call (0 disables usage)
        cost_per_response: Cost reported per call when usage is reported
        model: Model name recorded on runs
    """

    responses: dict[str, str] = field(default_factory=dict)
    default_response: str | None = None
    tokens_per_response: int = 100
    cost_per_response: float = 0.0
    model: str = "mock-model"
    name: str = "mock"

    async def run_prompt(
        self, prompt_text: str, context: ProviderContext | None = None
    ) -> ProviderResponse:
        context = context or ProviderContext()
        answer = self.responses.get(prompt_text)
        if answer is None:
            answer = self.default_response or self._build_answer(context)

        logger.debug(f"MockProviderAdapter answering prompt: {prompt_text[:50]}...")

        usage = None
        cost = None
        if self.tokens_per_response > 0:
            usage = TokenUsage(
                prompt_tokens=self.tokens_per_response // 2,
                completion_tokens=self.tokens_per_response
                - self.tokens_per_response // 2,
                total_tokens=self.tokens_per_response,
            )
            cost = self.cost_per_response

        return ProviderResponse(
            raw_text=answer,
            citations=extract_citations_from_text(answer),
            usage=usage,
            cost_estimate=cost,
        )

    def _build_answer(self, context: ProviderContext) -> str:
        names = context.brand_names + context.competitor_names
        if not names:
            return "Mock answer with no tracked names."
        return (
            f"Popular options include {', '.join(names)}. "
            f"{names[0]} is often recommended for its features.\n\n"
            "Sources:\n- https://example.com/reviews"
        )

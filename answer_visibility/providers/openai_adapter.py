"""
OpenAI answer adapter.

Implements ProviderAdapter on top of OpenAIChatClient. The answer is
requested with a system prompt that names the tracked brands/competitors
and asks for a trailing "Sources:" list; citations are then recovered from
the URLs in the answer text.
"""

import logging
import re
from urllib.parse import urlsplit

from answer_visibility.utils.cost import DEFAULT_COST_MODEL, estimate_cost

from .models import ParsedCitation, ProviderContext, ProviderResponse
from .openai_client import OpenAIChatClient
from .prompts import build_answer_system_prompt

DEFAULT_MODEL = DEFAULT_COST_MODEL
MAX_COMPLETION_TOKENS = 4096

URL_PATTERN = re.compile(r"https?://[^\s\)>\]]+", re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r"[.,;:!?]+$")

logger = logging.getLogger(__name__)


def extract_citations_from_text(text: str) -> list[ParsedCitation]:
    """
    Turn every URL in text into a citation, in order of appearance.

    Unparseable URLs are kept without a domain.

    Examples:
        >>> [c.domain for c in extract_citations_from_text(
        ...     "See https://www.acme.com/pricing. Also http://globex.io"
        ... )]
        ['acme.com', 'globex.io']
    """
    citations = []
    for index, match in enumerate(URL_PATTERN.finditer(text)):
        raw_url = match.group(0)
        url = TRAILING_PUNCTUATION.sub("", raw_url)
        try:
            hostname = urlsplit(url).hostname
        except ValueError:
            hostname = None

        if hostname:
            citations.append(
                ParsedCitation(
                    position=index + 1,
                    url=url,
                    domain=re.sub(r"^www\.", "", hostname),
                )
            )
        else:
            citations.append(ParsedCitation(position=index + 1, url=raw_url))
    return citations


class OpenAIAdapter:
    """
    ProviderAdapter for OpenAI chat models.

    Args:
        client: Chat client bound to the answer model
    """

    name = "openai"

    def __init__(self, client: OpenAIChatClient):
        self.client = client

    @property
    def model(self) -> str:
        return self.client.model_name

    async def run_prompt(
        self, prompt_text: str, context: ProviderContext | None = None
    ) -> ProviderResponse:
        context = context or ProviderContext()
        system_prompt = build_answer_system_prompt(
            context.brand_names, context.competitor_names
        )

        completion = await self.client.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt_text},
            ],
            max_completion_tokens=MAX_COMPLETION_TOKENS,
        )

        cost_estimate = None
        if completion.usage is not None:
            cost_estimate = estimate_cost(
                self.model,
                completion.usage.prompt_tokens,
                completion.usage.completion_tokens,
            )

        citations = extract_citations_from_text(completion.text)
        logger.info(
            f"OpenAI answer received: model={self.model}, "
            f"chars={len(completion.text)}, citations={len(citations)}"
        )

        return ProviderResponse(
            raw_text=completion.text,
            citations=citations,
            usage=completion.usage,
            cost_estimate=cost_estimate,
        )

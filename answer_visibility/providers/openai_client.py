"""
OpenAI Chat Completions client for Answer Visibility.

Async HTTP client shared by the OpenAI answer adapter and the LLM-assisted
extraction strategy.

Key features:
- Async HTTP via httpx.AsyncClient
- Retry on transient failures (429, 5xx, connect errors, timeouts) with
  exponential backoff (providers.retry_config)
- Fail fast on permanent errors (400, 401, 404)
- Security: NEVER logs API keys

Example:
    >>> client = OpenAIChatClient("gpt-4o-mini", api_key="sk-...")
    >>> completion = await client.complete(
    ...     [{"role": "user", "content": "What are the best CRM tools?"}],
    ...     max_completion_tokens=4096,
    ... )
    >>> completion.text[:40]
    'Here are some of the most popular CRM...'
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from answer_visibility.exceptions import ProviderResponseError

from .models import TokenUsage
from .retry_config import (
    NO_RETRY_STATUS_CODES,
    REQUEST_TIMEOUT,
    create_retry_decorator,
)

# Suppress HTTPX request logging
logging.getLogger("httpx").setLevel(logging.WARNING)

OPENAI_BASE_URL = "https://api.openai.com/v1"

logger = logging.getLogger(__name__)


@dataclass
class ChatCompletion:
    """
    Parsed chat completion.

    Attributes:
        text: Content of the first choice ("" when absent)
        usage: Token usage, None when the response omitted it
        model: Model name echoed by the API
    """

    text: str
    usage: TokenUsage | None
    model: str


class OpenAIChatClient:
    """
    Minimal async client for POST {base_url}/chat/completions.

    Attributes:
        model_name: OpenAI model identifier (e.g., "gpt-4o-mini")
        api_key: API key for the Authorization header (NEVER logged)
        base_url: API root, defaults to the public OpenAI endpoint

    Retry behavior:
        - Retries on: 429, 500, 502, 503, 504, connect errors, timeouts
        - Fails immediately on: 400, 401, 404 (ProviderResponseError)
        - Max attempts and backoff bounds from retry_config
    """

    def __init__(self, model_name: str, api_key: str, base_url: str | None = None):
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")

        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.base_url = (base_url or OPENAI_BASE_URL).rstrip("/")

        logger.debug(f"Initialized OpenAI chat client for model: {model_name}")

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    @create_retry_decorator()
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int | None = None,
        max_completion_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatCompletion:
        """
        Send a chat completion request.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            max_tokens: Legacy completion cap (extraction requests)
            max_completion_tokens: Completion cap for answer requests
            temperature: Sampling temperature, omitted when None

        Returns:
            ChatCompletion with the first choice's text and usage

        Raises:
            ValueError: If messages is empty
            ProviderResponseError: On non-retryable status codes or a
                malformed response body
            httpx.HTTPStatusError: On retryable HTTP errors after retries
            httpx.ConnectError: On connection failures after retries
            httpx.TimeoutException: On timeouts after retries
        """
        if not messages:
            raise ValueError("messages cannot be empty")

        payload: dict[str, Any] = {"model": self.model_name, "messages": messages}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if max_completion_tokens is not None:
            payload["max_completion_tokens"] = max_completion_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(f"Sending chat completion request: model={self.model_name}")

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(self.url, json=payload, headers=headers)

                if response.status_code in NO_RETRY_STATUS_CODES:
                    error_detail = self._extract_error_detail(response)
                    raise ProviderResponseError(
                        f"OpenAI API error (non-retryable): "
                        f"status={response.status_code}, "
                        f"model={self.model_name}, "
                        f"detail={error_detail}"
                    )

                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            error_detail = self._extract_error_detail(e.response)
            logger.error(
                f"OpenAI API HTTP error: "
                f"status={e.response.status_code}, "
                f"model={self.model_name}, "
                f"detail={error_detail}"
            )
            raise

        except httpx.ConnectError as e:
            logger.error(
                f"OpenAI API connection error: model={self.model_name}, error={e}"
            )
            raise

        except httpx.TimeoutException as e:
            logger.error(f"OpenAI API timeout: model={self.model_name}, error={e}")
            raise

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Failed to parse OpenAI response JSON: {e}"
            ) from e

        return ChatCompletion(
            text=self._extract_text(data),
            usage=self._extract_usage(data),
            model=data.get("model", self.model_name),
        )

    def _extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list):
            raise ProviderResponseError("OpenAI response missing 'choices' field")
        if not choices:
            return ""

        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def _extract_usage(self, data: dict[str, Any]) -> TokenUsage | None:
        usage = data.get("usage")
        if not usage:
            return None

        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage.get("total_tokens", prompt_tokens + completion_tokens),
        )

    def _extract_error_detail(self, response: httpx.Response) -> str:
        """
        Extract the error message from an error response body.

        NEVER includes API keys; only the API's own message is returned.
        """
        try:
            error = response.json().get("error", {})
            return str(error.get("message", "Unknown error"))
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"

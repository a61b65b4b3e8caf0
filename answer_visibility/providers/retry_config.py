"""
Retry configuration for provider HTTP calls.

One tenacity policy shared by the answer adapter and the LLM-assisted
extractor so both treat transient and permanent failures alike:

- Retry on network errors, request timeouts and 429/5xx responses
- Fail fast on 400/401/404 (the caller raises a non-retryable error)
- Exponential backoff between attempts, capped

These retries are per HTTP request and happen inside one job attempt. The
job queue's own backoff (SchedulerSettings) applies on top, across attempts.

Example:
    >>> @create_retry_decorator()
    ... async def call_api():
    ...     if response.status_code in NO_RETRY_STATUS_CODES:
    ...         raise ProviderResponseError("Permanent error")
    ...     response.raise_for_status()
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# Total attempts per request (1 initial + 2 retries)
MAX_ATTEMPTS = 3

# Backoff bounds in seconds
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 60

# 429: rate limit; 5xx: server side, may recover
RETRY_STATUS_CODES = frozenset([429, 500, 502, 503, 504])

# Won't change on retry
NO_RETRY_STATUS_CODES = frozenset([400, 401, 404])

# Per-attempt HTTP timeout in seconds. The overall adapter call is bounded
# separately by ProviderSettings.request_timeout_seconds.
REQUEST_TIMEOUT = 60.0


def create_retry_decorator():
    """
    Create the tenacity retry decorator for provider HTTP calls.

    Retries httpx.HTTPStatusError, httpx.ConnectError and
    httpx.TimeoutException with exponential backoff, and re-raises the last
    exception once attempts are exhausted.
    """
    return retry(
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=MIN_WAIT_SECONDS,
            max=MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception_type(
            (
                httpx.HTTPStatusError,
                httpx.ConnectError,
                httpx.TimeoutException,
            )
        ),
        reraise=True,
    )

"""
Structured JSON logging for Answer Visibility.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields (job_id / run_id correlation)
- Secret redaction (never log API keys in full)

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from answer_visibility.utils.logging import setup_logging, log_with_context
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("answer_visibility.scheduler.queue")
    >>> log_with_context(logger, logging.INFO, "Job locked", job_id="8d1f...")

Security:
    - NEVER log full API keys
    - Only stderr is used (stdout reserved for CLI output)
"""

import json
import logging
import re
import sys
from typing import Any

from answer_visibility.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each record as one JSON object.

    Fields:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level name
    - component: Logger name
    - message: Human-readable message
    - context: Extra structured data (from extra={'context': {...}})
    - job_id / run_id: Correlation ids, when provided via extra
    - exception: Formatted traceback when exc_info is set
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "job_id"):
            log_entry["job_id"] = record.job_id

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts potential secrets from log records.

    Replaces API keys and bearer tokens with redacted versions showing only
    the last 4 characters:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    "Bearer abc123xyz789..." -> "Bearer ***z789"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match) -> str:
                return template.format(last4=match.group(0)[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Installs a single stderr handler with the JSON formatter and the secret
    redaction filter on the root logger. Safe to call more than once.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    job_id: str | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional correlation ids.

    Equivalent to logger.log(level, message, extra={...}).

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Job completed",
        ...     context={"cost": 0.0012},
        ...     job_id="8d1f...",
        ... )
    """
    extra: dict[str, Any] = {}

    if context is not None:
        extra["context"] = context
    if job_id is not None:
        extra["job_id"] = job_id
    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)


def track_error(
    logger: logging.Logger,
    error: BaseException,
    context: dict[str, Any] | None = None,
) -> None:
    """
    Record an error with its type, message and caller context at ERROR level.

    Example:
        >>> try:
        ...     await adapter.run_prompt(text, ctx)
        ... except Exception as e:
        ...     track_error(logger, e, {"prompt_id": prompt_id})
    """
    error_info = {"error_type": type(error).__name__, "error": str(error)}
    logger.error(
        f"Tracked error: {type(error).__name__}: {error}",
        extra={"context": {**error_info, **(context or {})}},
    )

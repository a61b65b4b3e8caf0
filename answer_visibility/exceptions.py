"""
Custom exceptions for Answer Visibility.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
AnswerVisibilityError for consistent catching.

Exception Hierarchy:
    AnswerVisibilityError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   └── DatabaseMigrationError
    ├── NotFoundError
    ├── ProviderError
    │   ├── UnsupportedProviderError
    │   ├── ProviderTimeoutError
    │   └── ProviderResponseError
    ├── ExtractionError
    ├── InvalidJobTransitionError
    └── BudgetExceededError

Quota outcomes (monthly run cap) are NOT exceptions: the prompt runner
reports them as a structured ``limit_exceeded`` result so callers can tell
"didn't run because of policy" apart from "tried and failed".

Usage:
    from answer_visibility.exceptions import NotFoundError

    try:
        result = await run_prompt_once(repo, prompt_id, "openai")
    except NotFoundError as e:
        logger.error(f"Nothing to run: {e}")
"""


class AnswerVisibilityError(Exception):
    """
    Base exception for all Answer Visibility errors.

    All custom exceptions in this application inherit from this class,
    which enables catching every application-specific error with a single
    except clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(AnswerVisibilityError):
    """
    Base class for configuration-related errors.

    Raised when configuration loading, parsing, or validation fails.
    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/visibility.config.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("scheduler.max_retry_attempts: must be >= 1")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    Required API key environment variable is not set.

    Example:
        raise APIKeyMissingError("OPENAI_API_KEY environment variable not set")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(AnswerVisibilityError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """Database file could not be created or opened."""

    pass


class DatabaseMigrationError(DatabaseError):
    """Applying a schema migration failed; the database stays at the old version."""

    pass


# ============================================================================
# Lookup Errors
# ============================================================================


class NotFoundError(AnswerVisibilityError):
    """
    A prompt, project or organization required for a run does not exist.

    Not retryable: the job queue fails the job terminally when it sees this.

    Attributes:
        entity_type: Kind of entity that was looked up ("prompt", "project", ...)
        entity_id: Identifier that was not found

    Example:
        raise NotFoundError("prompt", "3f7c...")
    """

    def __init__(self, entity_type: str, entity_id: str | None):
        super().__init__(
            f"{entity_type.capitalize()} not found: {entity_id}"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


# ============================================================================
# Provider Errors
# ============================================================================


class ProviderError(AnswerVisibilityError):
    """
    Base class for language-model provider errors.

    Caught by the prompt runner, recorded on the run, and retried by the
    job queue with exponential backoff.
    """

    pass


class UnsupportedProviderError(ProviderError):
    """
    No adapter is registered for the requested provider name.

    Example:
        raise UnsupportedProviderError("Unsupported provider: 'gemini'")
    """

    pass


class ProviderTimeoutError(ProviderError):
    """
    Provider call exceeded the configured overall timeout.

    Example:
        raise ProviderTimeoutError("openai call timed out after 120.0s")
    """

    pass


class ProviderResponseError(ProviderError):
    """
    Provider returned an invalid or malformed response.

    Example:
        raise ProviderResponseError("OpenAI response missing 'choices' field")
    """

    pass


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionError(AnswerVisibilityError):
    """
    LLM-assisted extraction could not produce a valid result.

    Internal to the extraction strategies: the fallback extractor converts
    it into a lexical extraction, so it never reaches the prompt runner.
    """

    pass


# ============================================================================
# Scheduling Errors
# ============================================================================


class InvalidJobTransitionError(AnswerVisibilityError):
    """
    A job was asked to move between two states that are not connected.

    Attributes:
        current: Status the job is in
        target: Status that was requested

    Example:
        raise InvalidJobTransitionError("completed", "running")
    """

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal job transition: {current} -> {target}")
        self.current = current
        self.target = target


# ============================================================================
# Budget Errors
# ============================================================================


class BudgetExceededError(AnswerVisibilityError):
    """
    Project's monthly hard budget is already used up.

    Raised by the on-demand run path. The scheduler reports the same
    condition as a skip count instead of raising.

    Attributes:
        current_usage: Spend so far this month in USD
        budget_limit: Configured hard limit in USD
    """

    def __init__(
        self,
        message: str,
        current_usage: float | None = None,
        budget_limit: float | None = None,
    ):
        super().__init__(message)
        self.current_usage = current_usage
        self.budget_limit = budget_limit

"""
Configuration schema models for Answer Visibility.

This module defines Pydantic models for validating and parsing the
visibility.config.yaml file. All models use Python 3.12+ type hints and
Pydantic v2 field validators.

Models:
    SchedulerSettings: Concurrency ceilings, retry/backoff and tick size
    ProviderSettings: One answer provider (provider, model, API key env var)
    ExtractionSettings: Extraction strategy (LLM-assisted or lexical)
    TierLimits: Quotas for one subscription tier
    AppConfig: Root configuration model (validates entire YAML)
    RuntimeProvider: ProviderSettings with resolved API key
    RuntimeExtractionSettings: ExtractionSettings with resolved API key
    RuntimeConfig: Runtime configuration with resolved API keys
"""

import math
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

from .constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_CONCURRENCY_LIMIT_PER_ORG,
    DEFAULT_CONCURRENCY_LIMIT_PER_PROJECT,
    DEFAULT_EXTRACTION_MAX_TOKENS,
    DEFAULT_EXTRACTION_MODEL,
    DEFAULT_MAX_JOBS_PER_TICK,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_OPENAI_API_KEY_ENV,
    DEFAULT_PROVIDER,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_TIER_LIMITS,
    FALLBACK_TIER,
)


class SchedulerSettings(BaseModel):
    """
    Scheduler and job queue settings.

    Injected into the scheduler and job queue so tests can run with
    different limits without touching module state.

    Attributes:
        concurrency_limit_per_project: Max running jobs per project
        concurrency_limit_per_org: Max running jobs per organization
        backoff_base_ms: Base retry delay in milliseconds
        backoff_multiplier: Exponential growth factor per attempt
        max_jobs_per_tick: Batch size of one drain pass
        max_retry_attempts: Attempts before a job fails terminally
        default_provider: Provider used for scheduled runs
        default_model: Model override for scheduled runs (None = adapter default)
        evaluate_alerts: Evaluate alert rules after successful queued runs
    """

    concurrency_limit_per_project: int = DEFAULT_CONCURRENCY_LIMIT_PER_PROJECT
    concurrency_limit_per_org: int = DEFAULT_CONCURRENCY_LIMIT_PER_ORG
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_jobs_per_tick: int = DEFAULT_MAX_JOBS_PER_TICK
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    default_provider: str = DEFAULT_PROVIDER
    default_model: str | None = None
    evaluate_alerts: bool = True

    @field_validator(
        "concurrency_limit_per_project",
        "concurrency_limit_per_org",
        "max_jobs_per_tick",
        "max_retry_attempts",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counters are >= 1."""
        if v < 1:
            raise ValueError(f"must be >= 1, got: {v}")
        return v

    @field_validator("backoff_base_ms")
    @classmethod
    def validate_backoff_base(cls, v: int) -> int:
        """Validate backoff base is non-negative."""
        if v < 0:
            raise ValueError(f"must be >= 0, got: {v}")
        return v

    @field_validator("backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        """Validate multiplier does not shrink delays."""
        if v < 1:
            raise ValueError(f"must be >= 1, got: {v}")
        return v


class ProviderSettings(BaseModel):
    """
    Answer provider configuration.

    Attributes:
        provider: Provider name ("openai", or "mock" for local runs)
        model_name: Default model for this provider
        env_api_key: Environment variable name containing the API key
        base_url: Optional API base URL override
        request_timeout_seconds: Overall timeout around one adapter call.
            None disables the timeout.
    """

    provider: Literal["openai", "mock"]
    model_name: str
    env_api_key: str | None = None
    base_url: str | None = None
    request_timeout_seconds: float | None = DEFAULT_PROVIDER_TIMEOUT_SECONDS

    @field_validator("model_name")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        """Validate model_name is non-empty."""
        if not v or v.isspace():
            raise ValueError("model_name cannot be empty")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout is positive if specified."""
        if v is not None and v <= 0:
            raise ValueError(f"request_timeout_seconds must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_api_key_env(self) -> "ProviderSettings":
        """Real providers need an API key environment variable."""
        if self.provider != "mock" and not self.env_api_key:
            raise ValueError(f"env_api_key is required for provider '{self.provider}'")
        return self


class ExtractionSettings(BaseModel):
    """
    Extraction method configuration.

    Attributes:
        method: "llm" tries LLM-assisted extraction and falls back to the
            lexical extractor; "lexical" never calls a model
        model_name: Model used for LLM-assisted extraction
        max_tokens: Completion token cap for the extraction call
        env_api_key: Environment variable holding the extraction API key
    """

    method: Literal["llm", "lexical"] = "llm"
    model_name: str = DEFAULT_EXTRACTION_MODEL
    max_tokens: int = DEFAULT_EXTRACTION_MAX_TOKENS
    env_api_key: str = DEFAULT_OPENAI_API_KEY_ENV

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_tokens must be >= 1, got: {v}")
        return v


class TierLimits(BaseModel):
    """
    Quotas for one subscription tier.

    runs_per_month of math.inf (YAML: .inf or null) disables the monthly gate.
    """

    project_limit: int
    prompts_per_project: int
    runs_per_month: float = math.inf

    @field_validator("runs_per_month", mode="before")
    @classmethod
    def none_means_unlimited(cls, v):
        if v is None:
            return math.inf
        return v

    @property
    def is_unlimited(self) -> bool:
        return math.isinf(self.runs_per_month)


def default_tiers() -> dict[str, TierLimits]:
    """Return the built-in tier table as TierLimits models."""
    return {key: TierLimits(**limits) for key, limits in DEFAULT_TIER_LIMITS.items()}


def get_tier_limits(tiers: dict[str, TierLimits], tier: str | None) -> TierLimits:
    """
    Look up a tier's limits, falling back to the 'free' tier.

    Examples:
        >>> get_tier_limits(default_tiers(), "starter").runs_per_month
        500.0
        >>> get_tier_limits(default_tiers(), "platinum").runs_per_month
        50.0
    """
    if tier and tier in tiers:
        return tiers[tier]
    if FALLBACK_TIER in tiers:
        return tiers[FALLBACK_TIER]
    return default_tiers()[FALLBACK_TIER]


class AppConfig(BaseModel):
    """
    Root configuration model for visibility.config.yaml.

    Example YAML:
        database_path: "./visibility.db"
        scheduler:
          max_jobs_per_tick: 10
        providers:
          - provider: openai
            model_name: gpt-4o-mini
            env_api_key: OPENAI_API_KEY
        extraction:
          method: llm
    """

    database_path: str = "./visibility.db"
    scheduler: SchedulerSettings = SchedulerSettings()
    providers: list[ProviderSettings] = [
        ProviderSettings(
            provider="openai",
            model_name="gpt-4o-mini",
            env_api_key=DEFAULT_OPENAI_API_KEY_ENV,
        )
    ]
    extraction: ExtractionSettings = ExtractionSettings()
    tiers: dict[str, TierLimits] = default_tiers()

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("database_path cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_providers(self) -> "AppConfig":
        """Provider names must be unique and the scheduler default must exist."""
        names = [p.provider for p in self.providers]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate provider entries: {sorted(duplicates)}")

        if self.scheduler.default_provider not in names:
            raise ValueError(
                f"scheduler.default_provider '{self.scheduler.default_provider}' "
                f"has no entry in providers (configured: {names})"
            )
        return self


class RuntimeProvider(BaseModel):
    """
    Provider settings with a resolved API key.

    The API key is held in memory only and is never logged or persisted.
    """

    provider: str
    model_name: str
    api_key: str | None = None
    base_url: str | None = None
    request_timeout_seconds: float | None = DEFAULT_PROVIDER_TIMEOUT_SECONDS


class RuntimeExtractionSettings(BaseModel):
    """Extraction settings with a resolved API key (None for lexical)."""

    method: Literal["llm", "lexical"]
    model_name: str
    max_tokens: int
    api_key: str | None = None


class RuntimeConfig(BaseModel):
    """
    Runtime configuration with resolved API keys.

    Created by config.loader after validating YAML and resolving
    environment variables. This is the contract passed to the CLI commands.

    Attributes:
        database_path: SQLite database file
        scheduler: Scheduler settings
        providers: Resolved provider settings keyed by provider name
        extraction: Resolved extraction settings
        tiers: Tier table
    """

    database_path: str
    scheduler: SchedulerSettings
    providers: dict[str, RuntimeProvider]
    extraction: RuntimeExtractionSettings
    tiers: dict[str, TierLimits]

    def get_provider(self, name: str) -> RuntimeProvider | None:
        return self.providers.get(name)

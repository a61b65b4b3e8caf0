"""
Configuration constants for Answer Visibility.

Defaults for the scheduler and provider settings, plus the built-in
subscription tier table. The values here only seed the Pydantic models in
config.schema; the scheduler and runner always read them through an
injected settings object.
"""

# Scheduler defaults
DEFAULT_CONCURRENCY_LIMIT_PER_PROJECT = 2
DEFAULT_CONCURRENCY_LIMIT_PER_ORG = 3
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_MULTIPLIER = 2
DEFAULT_MAX_JOBS_PER_TICK = 10
DEFAULT_MAX_RETRY_ATTEMPTS = 5

# Provider defaults
DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 120.0
DEFAULT_OPENAI_API_KEY_ENV = "OPENAI_API_KEY"

# Extraction defaults
DEFAULT_EXTRACTION_MODEL = "gpt-4o-mini"
DEFAULT_EXTRACTION_MAX_TOKENS = 500

# Tier used when an organization's tier key is unknown
FALLBACK_TIER = "free"

# tier -> project_limit, prompts_per_project, runs_per_month
DEFAULT_TIER_LIMITS: dict[str, dict[str, float]] = {
    "free": {"project_limit": 1, "prompts_per_project": 5, "runs_per_month": 50},
    "starter": {"project_limit": 3, "prompts_per_project": 20, "runs_per_month": 500},
    "pro": {"project_limit": 10, "prompts_per_project": 100, "runs_per_month": 2500},
    "enterprise": {
        "project_limit": 10,
        "prompts_per_project": 100,
        "runs_per_month": 2500,
    },
}

"""Configuration loading and validation for Answer Visibility."""

from .loader import build_runtime_config, load_config
from .schema import (
    AppConfig,
    ExtractionSettings,
    ProviderSettings,
    RuntimeConfig,
    RuntimeExtractionSettings,
    RuntimeProvider,
    SchedulerSettings,
    TierLimits,
    default_tiers,
    get_tier_limits,
)

__all__ = [
    "AppConfig",
    "ExtractionSettings",
    "ProviderSettings",
    "RuntimeConfig",
    "RuntimeExtractionSettings",
    "RuntimeProvider",
    "SchedulerSettings",
    "TierLimits",
    "build_runtime_config",
    "default_tiers",
    "get_tier_limits",
    "load_config",
]

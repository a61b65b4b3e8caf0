"""
Configuration loader for Answer Visibility.

This module loads YAML configuration files, validates them with Pydantic models,
and resolves API keys from environment variables to create a RuntimeConfig.

The declared configuration (AppConfig from YAML) is kept apart from the
runtime configuration (RuntimeConfig with resolved API keys); the YAML
holds only the names of environment variables, never the keys.

Functions:
    load_config: Main entrypoint to load and validate visibility.config.yaml
    build_runtime_config: Resolve an already-validated AppConfig
    resolve_provider_keys: Resolve provider env vars to API keys
    resolve_extraction_settings: Resolve the extraction API key
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from answer_visibility.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .schema import (
    AppConfig,
    RuntimeConfig,
    RuntimeExtractionSettings,
    RuntimeProvider,
)

logger = logging.getLogger(__name__)


def load_config(config_path: str | Path) -> RuntimeConfig:
    """
    Load visibility.config.yaml and resolve API keys from environment variables.

    This function:
    1. Loads YAML from the specified path
    2. Validates structure using the AppConfig Pydantic model
    3. Resolves API key environment variables to actual secrets
    4. Returns RuntimeConfig ready for the scheduler and runner

    Args:
        config_path: Path to visibility.config.yaml file (relative or absolute)

    Returns:
        RuntimeConfig with resolved API keys and validated configuration

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails
        APIKeyMissingError: If required API keys are missing from environment

    Security:
        - API keys are loaded from environment variables only
        - API keys are NEVER logged or written to disk
        - Uses yaml.safe_load() to prevent code injection
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    try:
        app_config = AppConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    runtime_config = build_runtime_config(app_config)
    logger.info(
        f"Loaded configuration from {config_path} "
        f"({len(runtime_config.providers)} providers, "
        f"extraction={runtime_config.extraction.method})"
    )
    return runtime_config


def build_runtime_config(app_config: AppConfig) -> RuntimeConfig:
    """
    Resolve secrets for an AppConfig and build the RuntimeConfig.

    Raises:
        APIKeyMissingError: If a required environment variable is not set
    """
    return RuntimeConfig(
        database_path=app_config.database_path,
        scheduler=app_config.scheduler,
        providers=resolve_provider_keys(app_config),
        extraction=resolve_extraction_settings(app_config),
        tiers=app_config.tiers,
    )


def _read_env_key(env_var_name: str, purpose: str) -> str:
    api_key = os.environ.get(env_var_name)
    if not api_key:
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} not set ({purpose}). "
            f"Please set it before running: export {env_var_name}=your-api-key"
        )
    return api_key


def resolve_provider_keys(config: AppConfig) -> dict[str, RuntimeProvider]:
    """
    Resolve API keys for every configured provider.

    The mock provider needs no key.

    Returns:
        Mapping provider name -> RuntimeProvider

    Raises:
        APIKeyMissingError: If any required environment variable is not set

    Security:
        - NEVER logs API keys (not even partial values)
        - API keys are only held in memory, never persisted
    """
    resolved: dict[str, RuntimeProvider] = {}
    for settings in config.providers:
        api_key = None
        if settings.provider != "mock":
            api_key = _read_env_key(
                settings.env_api_key, f"provider '{settings.provider}'"
            )

        resolved[settings.provider] = RuntimeProvider(
            provider=settings.provider,
            model_name=settings.model_name,
            api_key=api_key,
            base_url=settings.base_url,
            request_timeout_seconds=settings.request_timeout_seconds,
        )
    return resolved


def resolve_extraction_settings(config: AppConfig) -> RuntimeExtractionSettings:
    """
    Resolve the extraction API key when LLM-assisted extraction is enabled.

    Raises:
        APIKeyMissingError: If method is "llm" and the key variable is not set
    """
    extraction = config.extraction
    api_key = None
    if extraction.method == "llm":
        api_key = _read_env_key(extraction.env_api_key, "LLM-assisted extraction")

    return RuntimeExtractionSettings(
        method=extraction.method,
        model_name=extraction.model_name,
        max_tokens=extraction.max_tokens,
        api_key=api_key,
    )

"""
Configuration module for the Basecamp to Fizzy migration tool.

This module provides functions for loading configuration settings from YAML
files, applying environment overrides and creating a default configuration
file. Tokens and run parameters are not part of this file: they arrive via
the ``RunConfig`` and the authenticated adapters.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from basecamp_migrator.constants import (
    BASECAMP_API_URL,
    BASECAMP_TOKEN_URL,
    BASECAMP_USER_AGENT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RETRY_AFTER,
    DEFAULT_RETRY_DELAY,
    FIZZY_API_URL,
    SOURCE_SYSTEM,
)
from basecamp_migrator.exceptions import ConfigError
from basecamp_migrator.utils.logging import log_with_context

DEFAULT_STATE_DIR = "~/.basecamp-fizzy-migrate"


@dataclass
class BasecampApiConfig:
    """Connection settings for the Basecamp 3 API."""

    api_url: str = BASECAMP_API_URL
    account_id: str | None = None
    rate_limit: float = DEFAULT_RATE_LIMIT
    user_agent: str = BASECAMP_USER_AGENT
    token_url: str = BASECAMP_TOKEN_URL

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BasecampApiConfig:
        if not data:
            return cls()
        account_id = data.get("account_id")
        return cls(
            api_url=data.get("api_url", BASECAMP_API_URL),
            account_id=str(account_id) if account_id is not None else None,
            rate_limit=data.get("rate_limit", DEFAULT_RATE_LIMIT),
            user_agent=data.get("user_agent", BASECAMP_USER_AGENT),
            token_url=data.get("token_url", BASECAMP_TOKEN_URL),
        )


@dataclass
class FizzyApiConfig:
    """Connection settings for the Fizzy API."""

    api_url: str = FIZZY_API_URL
    rate_limit: float = DEFAULT_RATE_LIMIT

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FizzyApiConfig:
        if not data:
            return cls()
        return cls(
            api_url=data.get("api_url", FIZZY_API_URL),
            rate_limit=data.get("rate_limit", DEFAULT_RATE_LIMIT),
        )


@dataclass
class MigrationConfig:
    """Typed configuration for the migration tool.

    All fields default to the values the tool ships with, so an empty or
    missing config file yields a working configuration.
    """

    basecamp: BasecampApiConfig = field(default_factory=BasecampApiConfig)
    fizzy: FizzyApiConfig = field(default_factory=FizzyApiConfig)

    # Retry
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    default_retry_after: float = DEFAULT_RETRY_AFTER

    # Migration
    batch_size: int = DEFAULT_BATCH_SIZE
    state_dir: str = DEFAULT_STATE_DIR
    source_system: str = SOURCE_SYSTEM

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """Create a MigrationConfig from a raw config dictionary."""
        return cls(
            basecamp=BasecampApiConfig.from_dict(data.get("basecamp")),
            fizzy=FizzyApiConfig.from_dict(data.get("fizzy")),
            max_retries=data.get("max_retries", DEFAULT_MAX_RETRIES),
            retry_delay=data.get("retry_delay", DEFAULT_RETRY_DELAY),
            max_retry_delay=data.get("max_retry_delay", DEFAULT_MAX_RETRY_DELAY),
            default_retry_after=data.get("default_retry_after", DEFAULT_RETRY_AFTER),
            batch_size=data.get("batch_size", DEFAULT_BATCH_SIZE),
            state_dir=data.get("state_dir", DEFAULT_STATE_DIR),
            source_system=data.get("source_system", SOURCE_SYSTEM),
        )

    @property
    def state_path(self) -> Path:
        """Expanded directory holding run states and the user mapping file."""
        return Path(self.state_dir).expanduser()

    @property
    def retry_config(self) -> dict[str, Any]:
        """Retry settings in the shape ``ApiClient`` expects."""
        return {
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "max_retry_delay": self.max_retry_delay,
            "default_retry_after": self.default_retry_after,
        }

    def apply_env_overrides(self, environ: Mapping[str, str] | None = None) -> None:
        """Apply ``BASECAMP_*`` / ``FIZZY_*`` environment overrides in place."""
        env = os.environ if environ is None else environ

        if env.get("BASECAMP_API_URL"):
            self.basecamp.api_url = env["BASECAMP_API_URL"]
        if env.get("FIZZY_API_URL"):
            self.fizzy.api_url = env["FIZZY_API_URL"]
        if env.get("BASECAMP_RATE_LIMIT"):
            self.basecamp.rate_limit = _parse_rate(env["BASECAMP_RATE_LIMIT"], "BASECAMP_RATE_LIMIT")
        if env.get("FIZZY_RATE_LIMIT"):
            self.fizzy.rate_limit = _parse_rate(env["FIZZY_RATE_LIMIT"], "FIZZY_RATE_LIMIT")

    def validate(self) -> None:
        """Raise ``ConfigError`` when a setting cannot work."""
        if self.basecamp.rate_limit <= 0:
            raise ConfigError("basecamp.rate_limit must be positive")
        if self.fizzy.rate_limit <= 0:
            raise ConfigError("fizzy.rate_limit must be positive")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.retry_delay < 0 or self.max_retry_delay < 0:
            raise ConfigError("retry delays must not be negative")


def _parse_rate(value: str, name: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def load_config(
    config_path: Path, environ: Mapping[str, str] | None = None
) -> MigrationConfig:
    """
    Load configuration from YAML file and apply default values.

    Loads the configuration from the specified YAML file, applies default
    values for any missing option and then the environment overrides. If the
    file doesn't exist or is invalid, a warning is logged and default
    settings are used.

    Args:
        config_path: Path to the config YAML file
        environ: Environment mapping for overrides (defaults to ``os.environ``)

    Returns:
        A validated MigrationConfig

    Raises:
        ConfigError: If the resulting configuration is invalid
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
                # Handle None result from empty file
                if loaded_config is not None:
                    raw = loaded_config
            log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
        except (yaml.YAMLError, OSError) as e:
            log_with_context(
                logging.WARNING, f"Failed to load config file {config_path}: {e}"
            )
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    if not isinstance(raw, dict):
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} does not contain a mapping, using default settings",
        )
        raw = {}

    config = MigrationConfig.from_dict(raw)
    config.apply_env_overrides(environ)
    config.validate()
    return config


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "basecamp": {
            "api_url": BASECAMP_API_URL,
            "account_id": None,
            "rate_limit": DEFAULT_RATE_LIMIT,
        },
        "fizzy": {"api_url": FIZZY_API_URL, "rate_limit": DEFAULT_RATE_LIMIT},
        "max_retries": DEFAULT_MAX_RETRIES,
        "retry_delay": DEFAULT_RETRY_DELAY,
        "max_retry_delay": DEFAULT_MAX_RETRY_DELAY,
        "batch_size": DEFAULT_BATCH_SIZE,
        "state_dir": DEFAULT_STATE_DIR,
    }

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False

"""Agent configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cert_agent.integrations.kubernetes.config import KubernetesConfig
from cert_agent.integrations.platform.config import PlatformConfig

ENV_PREFIX = "CERT_AGENT_"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or validated."""


class AgentConfig(BaseModel):
    """Complete agent configuration.

    Attributes:
        platform: Platform API settings.
        kubernetes: Cluster connection settings.
        max_secured_routes: Quota ceiling. Zero or less disables issuance.
        renew_before_days: Renew certificates expiring within this many days.
        renew_interval_seconds: Interval between two renewal scans.
        report_interval_seconds: Interval between two quota usage checks.
        resync_seconds: Informer resync period.
        cache_sync_timeout_seconds: Deadline for the initial cache sync.
        max_retries: Attempts per certificate request before it is dropped.
        workers: Concurrent certificate issuance workers.
        pending_retry_after_seconds: Delay before polling a pending issuance again.
        log_level: Log level name.
        log_format: Console log rendering.
    """

    model_config = ConfigDict(extra="forbid")

    platform: PlatformConfig = PlatformConfig()
    kubernetes: KubernetesConfig = KubernetesConfig()
    max_secured_routes: int = 0
    renew_before_days: int = 30
    renew_interval_seconds: int = 24 * 60 * 60
    report_interval_seconds: int = 60
    resync_seconds: int = 5 * 60
    cache_sync_timeout_seconds: int = 120
    max_retries: int = 10
    workers: int = 4
    pending_retry_after_seconds: float = 10.0
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator(
        "renew_before_days",
        "renew_interval_seconds",
        "report_interval_seconds",
        "resync_seconds",
        "cache_sync_timeout_seconds",
        "workers",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate durations and counts are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max_retries is non-negative."""
        if v < 0:
            raise ValueError("max_retries must be non-negative")
        return v

    @field_validator("pending_retry_after_seconds")
    @classmethod
    def validate_pending_retry_after(cls, v: float) -> float:
        """Validate pending retry delay is positive."""
        if v <= 0:
            raise ValueError("pending_retry_after_seconds must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalise the log level."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {', '.join(VALID_LOG_LEVELS)}")
        return level

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> AgentConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            CERT_AGENT_PLATFORM_URL: Platform API base URL
            CERT_AGENT_TOKEN: Platform bearer token
            CERT_AGENT_MAX_SECURED_ROUTES: Quota ceiling
            CERT_AGENT_RENEW_BEFORE_DAYS: Renewal threshold in days
            CERT_AGENT_KUBECONFIG: Kubeconfig path
            CERT_AGENT_CONTEXT: Kubeconfig context
            CERT_AGENT_LOG_LEVEL: Log level
            CERT_AGENT_LOG_FORMAT: Log format (console, json)
        """
        config_dict = dict(base_config) if base_config else {}
        config_dict["platform"] = dict(config_dict.get("platform") or {})
        config_dict["kubernetes"] = dict(config_dict.get("kubernetes") or {})

        if url := os.environ.get(f"{ENV_PREFIX}PLATFORM_URL"):
            config_dict["platform"]["url"] = url

        if token := os.environ.get(f"{ENV_PREFIX}TOKEN"):
            config_dict["platform"]["token"] = token

        if max_secured := os.environ.get(f"{ENV_PREFIX}MAX_SECURED_ROUTES"):
            config_dict["max_secured_routes"] = int(max_secured)

        if renew_before := os.environ.get(f"{ENV_PREFIX}RENEW_BEFORE_DAYS"):
            config_dict["renew_before_days"] = int(renew_before)

        if kubeconfig := os.environ.get(f"{ENV_PREFIX}KUBECONFIG"):
            config_dict["kubernetes"]["kubeconfig"] = kubeconfig

        if context := os.environ.get(f"{ENV_PREFIX}CONTEXT"):
            config_dict["kubernetes"]["context"] = context

        if log_level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
            config_dict["log_level"] = log_level

        if log_format := os.environ.get(f"{ENV_PREFIX}LOG_FORMAT"):
            config_dict["log_format"] = log_format

        return cls.model_validate(config_dict)


def load_raw_config(path: Path | None) -> dict[str, Any]:
    """Read a YAML configuration file.

    Args:
        path: Path to the file. A missing file yields an empty mapping.

    Returns:
        The parsed mapping.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    if path is None or not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")
    return data


def load_config(path: Path | None = None) -> AgentConfig:
    """Load the agent configuration from a file and the environment.

    Args:
        path: Optional YAML configuration file.

    Returns:
        Validated agent configuration.

    Raises:
        ConfigError: If the file or the resulting configuration is invalid.
    """
    raw = load_raw_config(path)
    try:
        return AgentConfig.from_env(raw)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

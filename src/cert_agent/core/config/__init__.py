"""Configuration management with Pydantic validation."""

from cert_agent.core.config.models import (
    AgentConfig,
    ConfigError,
    load_config,
)

__all__ = [
    "AgentConfig",
    "ConfigError",
    "load_config",
]

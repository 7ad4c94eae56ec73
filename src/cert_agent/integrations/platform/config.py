"""Configuration model for the platform API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class PlatformConfig(BaseModel):
    """Platform API connection settings.

    The same endpoint serves certificate issuance and quota reporting.

    Attributes:
        url: Platform API base URL.
        token: Bearer token sent with every request.
        timeout: Request timeout in seconds.
        retries: Attempts on connection errors and timeouts.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = "https://platform.localhost/agent"
    token: str = ""
    timeout: int = 5
    retries: int = 3

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Validate retries is positive."""
        if v < 1:
            raise ValueError("retries must be at least 1")
        return v

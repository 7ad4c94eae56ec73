"""Kubernetes integration configuration models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator


class KubernetesConfig(BaseModel):
    """Connection settings for the watched cluster.

    When ``kubeconfig`` is unset the client falls back to the default
    kubeconfig location and then to the in-cluster service account.
    """

    model_config = ConfigDict(extra="forbid")

    kubeconfig: str | None = None
    context: str | None = None
    retry_attempts: int = 3

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str | None) -> str | None:
        """Expand ~ in kubeconfig path."""
        if not v:
            return None
        return str(Path(v).expanduser())

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry_attempts is positive."""
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v

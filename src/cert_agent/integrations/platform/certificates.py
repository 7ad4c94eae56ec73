"""Certificate authority client.

Resolves a set of domains into a signed certificate issued by the platform.
"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cert_agent.integrations.platform.base import (
    BasePlatformClient,
    PlatformAPIError,
    PlatformClientError,
)

logger = structlog.get_logger()


class CertificatePendingError(PlatformClientError):
    """Raised when issuance was requested but the certificate is not ready yet."""

    def __init__(self) -> None:
        super().__init__("certificate issuance pending", status_code=202)


class Certificate(BaseModel):
    """A certificate issued by the platform.

    ``certificate`` and ``private_key`` hold PEM bytes; the API transmits them
    base64 encoded.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    certificate: bytes = Field(description="PEM encoded certificate chain")
    private_key: bytes = Field(alias="privateKey", description="PEM encoded private key")
    domains: list[str] = Field(default_factory=list)
    not_before: datetime = Field(alias="notBefore")
    not_after: datetime = Field(alias="notAfter")

    @field_validator("certificate", "private_key", mode="before")
    @classmethod
    def decode_base64(cls, v: Any) -> Any:
        """Decode base64 strings received from the API."""
        if isinstance(v, str):
            return base64.b64decode(v)
        return v


class CertificateClient(BasePlatformClient):
    """Client of the platform certificate authority.

    Example:
        ```python
        with CertificateClient("https://platform.example.com/agent", token) as authority:
            cert = authority.obtain(["example.com", "www.example.com"])
        ```
    """

    @property
    def client_name(self) -> str:
        return "Certificate authority"

    def obtain(self, domains: list[str]) -> Certificate:
        """Obtain a certificate covering the given domains.

        Args:
            domains: Sanitized domain list.

        Returns:
            The issued certificate.

        Raises:
            CertificatePendingError: Issuance is in progress, retry later.
            PlatformAPIError: The platform answered with an error status.
            PlatformConnectionError: The platform could not be reached.
        """
        response = self._make_retry_request(
            "GET",
            "/certificates",
            params={"domains": ",".join(domains)},
        )

        if response.status_code == httpx.codes.ACCEPTED:
            raise CertificatePendingError()

        if response.status_code != httpx.codes.OK:
            self._raise_for_status(response)
            raise PlatformAPIError(response.status_code, response.text)

        try:
            return Certificate.model_validate(response.json())
        except ValueError as e:
            raise PlatformClientError(f"decode obtain response: {e}") from e

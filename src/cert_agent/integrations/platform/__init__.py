"""Platform API clients.

Provides HTTP clients for the platform the agent reports to:
- Certificate authority: certificate issuance
- Quota: secured routes usage reporting
"""

from cert_agent.integrations.platform.base import (
    BasePlatformClient,
    PlatformAPIError,
    PlatformAuthError,
    PlatformClientError,
    PlatformConnectionError,
)
from cert_agent.integrations.platform.certificates import (
    Certificate,
    CertificateClient,
    CertificatePendingError,
)
from cert_agent.integrations.platform.config import PlatformConfig
from cert_agent.integrations.platform.quota import QuotaClient

__all__ = [
    # Base
    "BasePlatformClient",
    "PlatformAPIError",
    "PlatformAuthError",
    "PlatformClientError",
    "PlatformConnectionError",
    # Clients
    "Certificate",
    "CertificateClient",
    "CertificatePendingError",
    "QuotaClient",
    # Config
    "PlatformConfig",
]

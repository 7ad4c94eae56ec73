"""Kubernetes services: certificate controller and issuance manager."""

from cert_agent.services.kubernetes.certificate_controller import (
    CertificateController,
    CertificateIssuer,
    register_secret_informer,
)
from cert_agent.services.kubernetes.certificate_manager import (
    CertificateAuthority,
    CertificateManager,
    CertificateRequest,
    request_from_secret,
)
from cert_agent.services.kubernetes.domains import parse_host_rule_domains, sanitize_domains
from cert_agent.services.kubernetes.ingress_class import IngressClassResolver
from cert_agent.services.kubernetes.sync_gate import CacheSyncGate, GatedEventHandler, SyncState
from cert_agent.services.kubernetes.workqueue import (
    ExponentialBackoffRateLimiter,
    RateLimitingQueue,
    WorkQueue,
)

__all__ = [
    "CacheSyncGate",
    "CertificateAuthority",
    "CertificateController",
    "CertificateIssuer",
    "CertificateManager",
    "CertificateRequest",
    "ExponentialBackoffRateLimiter",
    "GatedEventHandler",
    "IngressClassResolver",
    "RateLimitingQueue",
    "SyncState",
    "WorkQueue",
    "parse_host_rule_domains",
    "register_secret_informer",
    "request_from_secret",
    "sanitize_domains",
]

"""Managed TLS secret layout.

A managed secret carries the ownership label and records the certificate's
domains and validity window in annotations. Only managed secrets are ever
written or deleted by the agent.
"""

from __future__ import annotations

import base64
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cert_agent.integrations.kubernetes.models import Secret
    from cert_agent.integrations.platform.certificates import Certificate

CONTROLLER_NAME = "hub"

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"

ANNOTATION_ENABLE_ACME = "hub.traefik.io/enable-acme"
ANNOTATION_CERTIFICATE_DOMAINS = "hub.traefik.io/certificate-domains"
ANNOTATION_CERTIFICATE_NOT_BEFORE = "hub.traefik.io/certificate-not-before"
ANNOTATION_CERTIFICATE_NOT_AFTER = "hub.traefik.io/certificate-not-after"

SECRET_TYPE_TLS = "kubernetes.io/tls"
MANAGED_SECRET_SELECTOR = f"{LABEL_MANAGED_BY}={CONTROLLER_NAME}"


def is_acme_enabled(annotations: dict[str, str]) -> bool:
    """Whether a resource opted in to automatic certificate management."""
    return annotations.get(ANNOTATION_ENABLE_ACME) == "true"


def is_managed_secret(secret: Secret) -> bool:
    """Whether the secret carries the ownership label."""
    return secret.labels.get(LABEL_MANAGED_BY) == CONTROLLER_NAME


def get_certificate_domains(secret: Secret) -> list[str]:
    """Domains recorded on a managed secret, empty when not recorded."""
    domains = secret.annotations.get(ANNOTATION_CERTIFICATE_DOMAINS)
    if not domains:
        return []
    return domains.split(",")


def _timestamp_annotation(secret: Secret, key: str) -> datetime:
    return datetime.fromtimestamp(int(secret.annotations.get(key, "")), tz=UTC)


def get_certificate_not_before(secret: Secret) -> datetime:
    """Start of validity recorded on a managed secret.

    Raises:
        ValueError: The annotation is missing or not a decimal timestamp.
    """
    return _timestamp_annotation(secret, ANNOTATION_CERTIFICATE_NOT_BEFORE)


def get_certificate_not_after(secret: Secret) -> datetime:
    """Expiry recorded on a managed secret.

    Raises:
        ValueError: The annotation is missing or not a decimal timestamp.
    """
    return _timestamp_annotation(secret, ANNOTATION_CERTIFICATE_NOT_AFTER)


def build_managed_secret(
    namespace: str,
    name: str,
    domains: list[str],
    cert: Certificate,
) -> dict[str, Any]:
    """Build the body of a managed TLS secret.

    Args:
        namespace: Secret namespace.
        name: Secret name.
        domains: Sanitized domains the certificate was requested for.
        cert: Issued certificate.
    """
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": SECRET_TYPE_TLS,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {LABEL_MANAGED_BY: CONTROLLER_NAME},
            "annotations": {
                ANNOTATION_CERTIFICATE_DOMAINS: ",".join(domains),
                ANNOTATION_CERTIFICATE_NOT_BEFORE: str(int(cert.not_before.timestamp())),
                ANNOTATION_CERTIFICATE_NOT_AFTER: str(int(cert.not_after.timestamp())),
            },
        },
        "data": {
            "tls.crt": base64.b64encode(cert.certificate).decode("ascii"),
            "tls.key": base64.b64encode(cert.private_key).decode("ascii"),
        },
    }

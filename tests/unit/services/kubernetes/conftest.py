"""Shared fixtures for Kubernetes service tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest

from cert_agent.integrations.kubernetes.client import KubernetesClient
from cert_agent.integrations.kubernetes.informer import Informer
from cert_agent.integrations.kubernetes.models import Secret
from cert_agent.integrations.platform.certificates import Certificate
from cert_agent.services.kubernetes.secrets import (
    ANNOTATION_CERTIFICATE_DOMAINS,
    ANNOTATION_CERTIFICATE_NOT_AFTER,
    ANNOTATION_CERTIFICATE_NOT_BEFORE,
    CONTROLLER_NAME,
    LABEL_MANAGED_BY,
)

NOW = datetime(2026, 6, 1, tzinfo=UTC)


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Create a mock Kubernetes client with API sub-mocks.

    Error translation is the real one so services see typed exceptions.
    """
    mock_client = MagicMock()
    mock_client.translate_api_exception.side_effect = KubernetesClient.translate_api_exception
    mock_client.get_server_version.return_value = "v1.28.3"
    mock_client.has_api_resource.return_value = False
    return mock_client


@pytest.fixture
def certificate() -> Certificate:
    """An issued certificate for foo.com."""
    return Certificate(
        certificate=b"cert",
        private_key=b"key",
        domains=["foo.com"],
        not_before=datetime(2026, 5, 1, tzinfo=UTC),
        not_after=datetime(2026, 8, 1, tzinfo=UTC),
    )


@pytest.fixture
def make_secret() -> Callable[..., dict[str, Any]]:
    """Build a Secret wire dictionary."""

    def _make(
        name: str,
        namespace: str = "default",
        *,
        managed: bool = True,
        domains: str | None = None,
        not_after: datetime | None = None,
        version: str = "1",
    ) -> dict[str, Any]:
        annotations: dict[str, str] = {}
        if domains is not None:
            annotations[ANNOTATION_CERTIFICATE_DOMAINS] = domains
        if not_after is not None:
            annotations[ANNOTATION_CERTIFICATE_NOT_BEFORE] = str(int(NOW.timestamp()))
            annotations[ANNOTATION_CERTIFICATE_NOT_AFTER] = str(int(not_after.timestamp()))
        return {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "resourceVersion": version,
                "labels": {LABEL_MANAGED_BY: CONTROLLER_NAME} if managed else {},
                "annotations": annotations,
            },
            "type": "kubernetes.io/tls",
        }

    return _make


@pytest.fixture
def make_informer() -> Callable[..., Informer[Any]]:
    """Build an informer whose store holds the given objects."""

    def _make(name: str, normalize: Callable[[Any], Any], *items: dict[str, Any]) -> Informer[Any]:
        list_func = MagicMock(
            return_value={"items": list(items), "metadata": {"resourceVersion": "1"}}
        )
        informer: Informer[Any] = Informer(name, normalize, list_func)
        informer.relist()
        return informer

    return _make


@pytest.fixture
def secrets_informer(make_informer: Callable[..., Informer[Any]]) -> Informer[Secret]:
    """An empty, synced secret cache."""
    return make_informer("secrets", Secret.from_k8s_object)

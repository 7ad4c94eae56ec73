"""Tests for the certs command."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
import typer
from typer.testing import CliRunner

from cert_agent.integrations.kubernetes.exceptions import KubernetesConnectionError
from cert_agent.services.kubernetes.secrets import (
    ANNOTATION_CERTIFICATE_DOMAINS,
    ANNOTATION_CERTIFICATE_NOT_AFTER,
    ANNOTATION_CERTIFICATE_NOT_BEFORE,
    MANAGED_SECRET_SELECTOR,
)


def _managed_secret(name: str, namespace: str = "default", not_after: str | None = None) -> dict:
    expiry = datetime.now(UTC) + timedelta(days=60)
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"app.kubernetes.io/managed-by": "hub"},
            "annotations": {
                ANNOTATION_CERTIFICATE_DOMAINS: "foo.com",
                ANNOTATION_CERTIFICATE_NOT_BEFORE: str(int(datetime.now(UTC).timestamp())),
                ANNOTATION_CERTIFICATE_NOT_AFTER: not_after or str(int(expiry.timestamp())),
            },
        },
        "type": "kubernetes.io/tls",
    }


@pytest.fixture
def k8s_client(mocker: Any) -> MagicMock:
    client = MagicMock()
    client.__enter__.return_value = client
    mocker.patch("cert_agent.cli.commands.certs.KubernetesClient", return_value=client)
    return client


class TestCertsCommand:
    """Test certs command."""

    @pytest.mark.unit
    def test_lists_namespace(
        self, cli_runner: CliRunner, cli_app: typer.Typer, k8s_client: MagicMock
    ) -> None:
        """Test managed certificates are listed with their validity."""
        k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(
            items=[_managed_secret("web")]
        )

        result = cli_runner.invoke(cli_app, ["certs", "-n", "shop"])

        assert result.exit_code == 0
        assert "Managed Certificates" in result.stdout
        assert "web" in result.stdout
        assert "foo.com" in result.stdout
        k8s_client.core_v1.list_namespaced_secret.assert_called_once_with(
            "shop", label_selector=MANAGED_SECRET_SELECTOR
        )

    @pytest.mark.unit
    def test_all_namespaces(
        self, cli_runner: CliRunner, cli_app: typer.Typer, k8s_client: MagicMock
    ) -> None:
        k8s_client.core_v1.list_secret_for_all_namespaces.return_value = MagicMock(
            items=[_managed_secret("a", "one"), _managed_secret("b", "two")]
        )

        result = cli_runner.invoke(cli_app, ["certs", "--all-namespaces"])

        assert result.exit_code == 0
        k8s_client.core_v1.list_secret_for_all_namespaces.assert_called_once_with(
            label_selector=MANAGED_SECRET_SELECTOR
        )

    @pytest.mark.unit
    def test_unparseable_expiry(
        self, cli_runner: CliRunner, cli_app: typer.Typer, k8s_client: MagicMock
    ) -> None:
        k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(
            items=[_managed_secret("web", not_after="soon")]
        )

        result = cli_runner.invoke(cli_app, ["certs"])

        assert result.exit_code == 0
        assert "unknown" in result.stdout

    @pytest.mark.unit
    def test_no_certificates(
        self, cli_runner: CliRunner, cli_app: typer.Typer, k8s_client: MagicMock
    ) -> None:
        k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(items=[])

        result = cli_runner.invoke(cli_app, ["certs"])

        assert result.exit_code == 0
        assert "No managed certificates found." in result.stdout

    @pytest.mark.unit
    def test_cluster_error(
        self, cli_runner: CliRunner, cli_app: typer.Typer, mocker: Any
    ) -> None:
        mocker.patch(
            "cert_agent.cli.commands.certs.KubernetesClient",
            side_effect=KubernetesConnectionError("no kubeconfig"),
        )

        result = cli_runner.invoke(cli_app, ["certs"])

        assert result.exit_code == 1
        assert "no kubeconfig" in result.stdout

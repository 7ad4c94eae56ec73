"""Tests for main CLI module."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import typer
from typer.testing import CliRunner

from cert_agent.integrations.kubernetes.exceptions import KubernetesConnectionError
from cert_agent.integrations.platform.base import PlatformAuthError


class TestCLIMain:
    """Test main CLI entry point."""

    @pytest.mark.unit
    def test_help_option(self, cli_runner: CliRunner, cli_app: typer.Typer) -> None:
        """Test --help option displays help text."""
        result = cli_runner.invoke(cli_app, ["--help"])
        assert result.exit_code == 0
        assert "Provision and renew TLS certificates" in result.stdout

    @pytest.mark.unit
    def test_version_option(self, cli_runner: CliRunner, cli_app: typer.Typer) -> None:
        """Test --version option displays version."""
        result = cli_runner.invoke(cli_app, ["--version"])
        assert result.exit_code == 0
        assert "cert-agent version 0.1.0" in result.stdout

    @pytest.mark.unit
    def test_verbose_flag(self, cli_runner: CliRunner, cli_app: typer.Typer) -> None:
        """Test --verbose flag is accepted."""
        result = cli_runner.invoke(cli_app, ["--verbose", "--help"])
        assert result.exit_code == 0


class TestRunCommand:
    """Test run command."""

    @pytest.fixture
    def mock_agent(self, mocker: Any) -> MagicMock:
        mocker.patch("cert_agent.cli.commands.run.configure_logging")
        mocker.patch("cert_agent.cli.commands.run.install_signal_handlers")
        return mocker.patch("cert_agent.cli.commands.run.Agent")

    @pytest.mark.unit
    def test_run_starts_agent(
        self,
        cli_runner: CliRunner,
        cli_app: typer.Typer,
        temp_config_file: Path,
        mock_agent: MagicMock,
    ) -> None:
        """Test run builds the agent from the config file and runs it."""
        result = cli_runner.invoke(cli_app, ["run", "--config", str(temp_config_file)])

        assert result.exit_code == 0
        config = mock_agent.call_args.args[0]
        assert config.max_secured_routes == 10
        mock_agent.return_value.run.assert_called_once()

    @pytest.mark.unit
    def test_run_invalid_config(
        self,
        cli_runner: CliRunner,
        cli_app: typer.Typer,
        tmp_path: Path,
        mock_agent: MagicMock,
    ) -> None:
        """Test run exits with an error on invalid configuration."""
        config = tmp_path / "bad.yaml"
        config.write_text("max_secured_routes: [1, 2]\n")

        result = cli_runner.invoke(cli_app, ["run", "-c", str(config)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output
        mock_agent.assert_not_called()

    @pytest.mark.unit
    def test_run_cluster_unreachable(
        self,
        cli_runner: CliRunner,
        cli_app: typer.Typer,
        mock_agent: MagicMock,
    ) -> None:
        """Test run exits when the cluster cannot be reached."""
        mock_agent.side_effect = KubernetesConnectionError("no kubeconfig")

        result = cli_runner.invoke(cli_app, ["run"])

        assert result.exit_code == 1

    @pytest.mark.unit
    def test_run_agent_failure(
        self,
        cli_runner: CliRunner,
        cli_app: typer.Typer,
        mock_agent: MagicMock,
    ) -> None:
        """Test run exits when a component fails."""
        mock_agent.return_value.run.side_effect = PlatformAuthError("rejected", status_code=401)

        result = cli_runner.invoke(cli_app, ["run"])

        assert result.exit_code == 1

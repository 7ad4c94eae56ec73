"""Shared pytest fixtures for cert_agent tests."""

from __future__ import annotations

import os
import threading
from collections.abc import Generator
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from cert_agent.cli.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary agent config file."""
    config_path = tmp_path / "cert-agent.yaml"
    config_path.write_text(
        """
platform:
  url: https://platform.example.com/agent
  token: secret-token
max_secured_routes: 10
renew_before_days: 20
"""
    )
    return config_path


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("CERT_AGENT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def stop_event() -> Generator[threading.Event]:
    """Stop event set on teardown so background threads exit."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def cli_app() -> typer.Typer:
    """Return the CLI app for testing."""
    return app

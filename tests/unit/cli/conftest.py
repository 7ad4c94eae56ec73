"""Shared fixtures for CLI tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest


@pytest.fixture(autouse=True)
def restore_root_handlers() -> Generator[None]:
    """Drop the console handler bound to the runner's captured stdout."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    root.handlers = handlers

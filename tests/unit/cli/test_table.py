"""Tests for the Table output wrapper."""

from __future__ import annotations

import pytest

from cert_agent.cli.output import Table


@pytest.mark.unit
class TestTable:
    """Test Table defaults."""

    def test_columns_fold_by_default(self) -> None:
        table = Table()
        table.add_column("Domains")

        assert table.columns[0].overflow == "fold"

    def test_overflow_can_be_overridden(self) -> None:
        table = Table()
        table.add_column("Secret", overflow="ellipsis")

        assert table.columns[0].overflow == "ellipsis"

    def test_bold_headers_by_default(self) -> None:
        assert Table().header_style == "bold"
        assert Table(header_style="cyan").header_style == "cyan"

"""Table output for CLI commands.

Wraps Rich's Table so that every command renders with the same defaults.
"""

from __future__ import annotations

from typing import Any

from rich.table import Table as RichTable


class Table(RichTable):
    """Rich Table whose columns wrap long values instead of truncating them.

    Usage:
        from cert_agent.cli.output import Table

        table = Table(title="Managed certificates")
        table.add_column("Domains")  # Wraps long domain lists
        table.add_column("Secret", no_wrap=True)
        table.add_row("example.com,www.example.com", "default/example-tls")
    """

    def __init__(self, *headers: Any, **kwargs: Any) -> None:
        kwargs.setdefault("header_style", "bold")
        super().__init__(*headers, **kwargs)

    def add_column(self, header: Any = "", footer: Any = "", **kwargs: Any) -> None:
        """Add a column with ``overflow="fold"`` unless told otherwise."""
        kwargs.setdefault("overflow", "fold")
        super().add_column(header, footer, **kwargs)

"""CLI output utilities.

Usage:
    from cert_agent.cli.output import Table

    table = Table(title="Managed certificates")
    table.add_column("Secret", style="cyan")
    table.add_row("default/example-tls")
    console.print(table)
"""

from cert_agent.cli.output.table import Table

__all__ = ["Table"]

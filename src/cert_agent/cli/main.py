"""Main CLI entry point using Typer."""

from __future__ import annotations

import typer
from rich.console import Console

from cert_agent import __version__
from cert_agent.cli.commands import certs, run
from cert_agent.logging.config import configure_logging

app = typer.Typer(
    name="cert-agent",
    help="Provision and renew TLS certificates for Kubernetes Ingresses.",
    add_completion=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cert-agent version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Write console logs as JSON.",
    ),
) -> None:
    """cert-agent - Provision and renew TLS certificates for opted-in Ingresses."""
    ctx.obj = {"verbose": verbose, "debug": debug, "json_logs": json_logs}
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs, file_logging=False)


app.command()(run.run)
app.command()(certs.certs)


if __name__ == "__main__":
    app()

"""Run command: start the certificate agent."""

from __future__ import annotations

from pathlib import Path

import structlog
import typer
from rich.console import Console

from cert_agent.core.config import ConfigError, load_config
from cert_agent.integrations.kubernetes.exceptions import KubernetesError
from cert_agent.integrations.platform.base import PlatformClientError
from cert_agent.logging.config import configure_logging
from cert_agent.services.agent import Agent, install_signal_handlers

console = Console(stderr=True)
logger = structlog.get_logger()


def run(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML configuration file.",
        dir_okay=False,
    ),
) -> None:
    """Run the agent until interrupted."""
    try:
        agent_config = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e

    flags = ctx.obj or {}
    configure_logging(
        verbose=flags.get("verbose", False),
        debug=flags.get("debug", False),
        json_output=flags.get("json_logs", False) or agent_config.log_format == "json",
        level=agent_config.log_level,
    )

    try:
        agent = Agent(agent_config)
    except KubernetesError as e:
        console.print(f"[red]Unable to connect to the cluster:[/red] {e}")
        raise typer.Exit(1) from e

    install_signal_handlers(agent.stop_event)

    try:
        agent.run()
    except (KubernetesError, PlatformClientError) as e:
        logger.error("agent_failed", error=str(e))
        console.print(f"[red]Agent stopped:[/red] {e}")
        raise typer.Exit(1) from e

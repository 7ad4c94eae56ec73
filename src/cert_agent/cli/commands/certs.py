"""Certs command: list the certificates managed by the agent."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console

from cert_agent.cli.output import Table
from cert_agent.core.config import ConfigError, load_config
from cert_agent.integrations.kubernetes.client import KubernetesClient
from cert_agent.integrations.kubernetes.exceptions import KubernetesError
from cert_agent.integrations.kubernetes.models import Secret
from cert_agent.services.kubernetes.secrets import (
    MANAGED_SECRET_SELECTOR,
    get_certificate_domains,
    get_certificate_not_after,
    get_certificate_not_before,
)

console = Console()


def _format_time(
    secret: Secret, getter: Callable[[Secret], datetime]
) -> tuple[str, datetime | None]:
    try:
        value = getter(secret)
    except (ValueError, OverflowError, OSError):
        return "-", None
    return value.strftime("%Y-%m-%d %H:%M UTC"), value


def list_managed_secrets(
    client: KubernetesClient, namespace: str | None, all_namespaces: bool
) -> list[Secret]:
    """Fetch managed secrets from the API."""
    try:
        if all_namespaces:
            result = client.core_v1.list_secret_for_all_namespaces(
                label_selector=MANAGED_SECRET_SELECTOR
            )
        else:
            result = client.core_v1.list_namespaced_secret(
                namespace or "default", label_selector=MANAGED_SECRET_SELECTOR
            )
    except Exception as e:
        raise client.translate_api_exception(e, resource_type="Secret", namespace=namespace) from e
    return [Secret.from_k8s_object(item) for item in result.items]


def certs(
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Namespace to list (default: default).",
    ),
    all_namespaces: bool = typer.Option(
        False,
        "--all-namespaces",
        "-A",
        help="List managed certificates in every namespace.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML configuration file.",
        dir_okay=False,
    ),
) -> None:
    """Show managed certificates with their validity."""
    try:
        agent_config = load_config(config)
        with KubernetesClient(agent_config.kubernetes) as client:
            secrets = list_managed_secrets(client, namespace, all_namespaces)
    except (ConfigError, KubernetesError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if not secrets:
        console.print("[yellow]No managed certificates found.[/yellow]")
        return

    now = datetime.now(UTC)
    table = Table(title="Managed Certificates")
    table.add_column("Namespace", style="cyan", no_wrap=True)
    table.add_column("Secret", style="cyan", no_wrap=True)
    table.add_column("Domains")
    table.add_column("Not Before", style="dim")
    table.add_column("Not After")
    table.add_column("Days Left", justify="right")

    for secret in sorted(secrets, key=lambda s: (s.namespace, s.name)):
        not_before, _ = _format_time(secret, get_certificate_not_before)
        not_after, expiry = _format_time(secret, get_certificate_not_after)
        if expiry is None:
            days_left = "[red]unknown[/red]"
        else:
            days = (expiry - now).days
            color = "red" if days < 0 else "yellow" if days < 30 else "green"
            days_left = f"[{color}]{days}[/{color}]"
        table.add_row(
            secret.namespace,
            secret.name,
            ", ".join(get_certificate_domains(secret)),
            not_before,
            not_after,
            days_left,
        )

    console.print(table)

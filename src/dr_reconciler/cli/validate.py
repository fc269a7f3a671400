"""Validate command for checking configuration without touching any cluster."""

import json
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config.models import ReconcilerConfig
from ..config.parser import Config, ConfigValidationError
from ..utils.logging import get_logger

logger = get_logger(__name__)
console = Console()


@click.command()
@click.option('--json-output', is_flag=True, help='Output the resolved configuration as JSON')
@click.pass_context
def validate(ctx, json_output: bool):
    """Validate configuration and show the resolved values."""
    config_path = ctx.obj.get('config') if ctx.obj else None
    try:
        settings = Config(config_path).load().get_settings()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except ConfigValidationError as e:
        if json_output:
            console.print_json(data={'valid': False, 'errors': e.errors or [{'loc': [], 'msg': e.message}]})
        else:
            console.print("[red]Configuration validation failed:[/red]\n")
            console.print(str(e))
        sys.exit(1)

    if json_output:
        console.print_json(json.dumps({'valid': True, 'config': settings.model_dump(mode='json')}))
    else:
        _output_rich(config_path, settings)


def _output_rich(config_path, settings: ReconcilerConfig):
    """Output the resolved configuration as tables."""
    source = config_path or "defaults and environment"
    console.print(Panel.fit(
        f"[green]✓ Configuration is valid[/green]\n\nSource: {source}",
        title="Validation",
        border_style="green"
    ))

    clusters = settings.clusters
    table = Table(title="Clusters", show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Hub", clusters.hub)
    table.add_row("Managed", ", ".join(clusters.managed))
    table.add_row("Discover managed", "yes" if clusters.discover_managed else "no")
    table.add_row("Kubeconfig dir", clusters.kubeconfig_dir)
    table.add_row("Request timeout", f"{clusters.request_timeout}s")
    table.add_row("Dry run", "yes" if settings.dry_run else "no")
    console.print(table)

    policies = Table(title="Job policies", show_header=True, header_style="bold cyan")
    policies.add_column("Job", style="cyan")
    policies.add_column("Attempts", justify="right")
    policies.add_column("Interval", justify="right")
    policies.add_column("Retry forever", style="yellow")
    for name, policy in settings.jobs.items():
        policies.add_row(
            name,
            str(policy.max_attempts),
            f"{policy.interval_seconds:.0f}s",
            "yes" if policy.retry_forever else "no",
        )
    console.print(policies)

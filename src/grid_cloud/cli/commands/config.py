"""Configuration management commands."""

import anyio
import typer
from rich.console import Console
from rich.table import Table

from grid_cloud.auth import API_KEY_CONFIG_KEY, AuthService
from grid_cloud.config import (
    get_config_file,
    load_config,
    set_config_value,
)
from grid_cloud.enterprise import CONFIG_KEY, EnterpriseConfigService
from grid_cloud.exceptions import GridCloudError

config_app = typer.Typer(
    name="config",
    help="Manage client configuration",
)
console = Console()


def _mask(value: str) -> str:
    if len(value) <= 9:
        return "****"
    return f"{value[:5]}...{value[-4:]}"


@config_app.command("show")
def config_show() -> None:
    """Display current configuration."""
    config = load_config()

    if not config:
        console.print("[yellow]No configuration found.[/yellow]")
        console.print(f"Config file: [dim]{get_config_file()}[/dim]")
        return

    table = Table(title="GRID Cloud Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    for key, value in sorted(config.items()):
        if key == CONFIG_KEY:
            value = f"<version {config.get('enterprise_config_version', '?')}>"
        elif key == API_KEY_CONFIG_KEY:
            value = _mask(str(value))
        table.add_row(key, str(value))

    console.print(table)
    console.print(f"\nConfig file: [dim]{get_config_file()}[/dim]")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key to set"),
    value: str = typer.Argument(..., help="Value to set"),
) -> None:
    """Set a configuration value.

    Examples:
        grid-cloud config set api_base_url http://localhost:3000/api
        grid-cloud config set sync_interval_seconds 120
    """
    set_config_value(key, value)
    console.print(f"[green]✓[/green] Set [cyan]{key}[/cyan] = [green]{value}[/green]")
    console.print(f"Config file: [dim]{get_config_file()}[/dim]")


@config_app.command("pull")
def config_pull() -> None:
    """Fetch the enterprise configuration and apply it if newer."""
    anyio.run(_config_pull_async)


async def _config_pull_async() -> None:
    auth = AuthService()
    if not auth.is_authenticated():
        console.print("[yellow]Not logged in.[/yellow] Run: grid-cloud auth login")
        raise typer.Exit(code=1)

    service = EnterpriseConfigService(auth)
    try:
        applied = await service.sync_config()
    except GridCloudError as e:
        console.print(f"[red]✗ Config sync failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    if applied:
        console.print(
            f"[green]✓ Enterprise configuration updated to version {service.local_version()}.[/green]"
        )
    else:
        console.print("[green]Enterprise configuration is up to date.[/green]")

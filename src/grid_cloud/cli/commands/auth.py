"""Login, logout and account information."""

import anyio
import typer
from rich.console import Console
from rich.table import Table

from grid_cloud.auth import AuthService, User
from grid_cloud.enterprise import EnterpriseConfigService
from grid_cloud.exceptions import GridCloudError

auth_app = typer.Typer(name="auth", help="Manage your GRID Cloud login")
console = Console()


def _render_user(user: User) -> None:
    table = Table(title="GRID Account", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Email", user.email)
    table.add_row("Tier", user.tier.upper())
    if user.team_id:
        table.add_row("Team", user.team_id + (" (admin)" if user.is_team_admin else ""))
    console.print(table)


@auth_app.command("login")
def auth_login(
    api_key: str = typer.Option(
        ...,
        "--api-key",
        prompt="Enter your GRID API Key (starts with grid_)",
        hide_input=True,
        help="API key from your account page",
    ),
) -> None:
    """Validate and store an API key."""
    anyio.run(_login_async, api_key)


async def _login_async(api_key: str) -> None:
    auth = AuthService()
    config_service = EnterpriseConfigService(auth)
    try:
        user = await auth.login(api_key)
    except GridCloudError as e:
        console.print(f"[red]✗ Login failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"[green]✓ Logged in as {user.email} ({user.tier})[/green]")
    if config_service.pending is not None and await config_service.pending:
        console.print("[cyan]Enterprise configuration updated.[/cyan]")


@auth_app.command("logout")
def auth_logout() -> None:
    """Forget the stored API key."""
    AuthService().logout()
    console.print("[green]Logged out of GRID Cloud.[/green]")


@auth_app.command("whoami")
def auth_whoami() -> None:
    """Show the account of the stored API key."""
    anyio.run(_whoami_async)


async def _whoami_async() -> None:
    auth = AuthService()
    if not auth.is_authenticated():
        console.print("[yellow]Not logged in.[/yellow] Run: grid-cloud auth login")
        raise typer.Exit(code=1)
    try:
        user = await auth.restore()
    except GridCloudError as e:
        console.print(f"[red]✗ Could not validate stored key:[/red] {e}")
        raise typer.Exit(code=1) from e
    if user is not None:
        _render_user(user)

"""Cloud workspace listing."""

import anyio
import typer
from rich.console import Console
from rich.table import Table

from grid_cloud.auth import AuthService
from grid_cloud.cache.manager import CacheManager
from grid_cloud.exceptions import GridCloudError
from grid_cloud.sync.protocol import SyncClient

workspaces_app = typer.Typer(name="workspaces", help="Manage cloud workspaces")
console = Console()


@workspaces_app.command("list")
def workspaces_list() -> None:
    """List cloud workspaces and where they are synced locally."""
    anyio.run(_list_async)


async def _list_async() -> None:
    api_key = AuthService().get_credential()
    if api_key is None:
        console.print("[red]Not logged in.[/red] Run: grid-cloud auth login")
        raise typer.Exit(code=1)

    try:
        async with SyncClient(api_key) as client:
            workspaces = await client.list_workspaces()
    except GridCloudError as e:
        console.print(f"[red]✗ Could not list workspaces:[/red] {e}")
        raise typer.Exit(code=1) from e

    if not workspaces:
        console.print("[yellow]No cloud workspaces yet.[/yellow]")
        return

    cache = CacheManager()
    try:
        local = {w.workspace_id: w.root_path for w in cache.get_all_workspaces()}
    finally:
        cache.close()

    table = Table(title="Cloud Workspaces", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Local Path", style="green")
    table.add_column("Updated", style="white")
    for workspace in workspaces:
        workspace_id = str(workspace.get("id", ""))
        table.add_row(
            workspace_id,
            str(workspace.get("name", "")),
            local.get(workspace_id, "-"),
            str(workspace.get("updated_at") or "-"),
        )
    console.print(table)

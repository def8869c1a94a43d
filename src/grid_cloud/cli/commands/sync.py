"""Sync CLI commands for manual and periodic workspace sync."""

from pathlib import Path

import anyio
import typer
from rich.console import Console
from rich.table import Table

from grid_cloud import events
from grid_cloud.auth import AuthService
from grid_cloud.cache.manager import CacheManager
from grid_cloud.config import get_sync_interval
from grid_cloud.sync.detector import ChangeDetector, ChangeSet
from grid_cloud.sync.service import CycleReport, CycleStatus, WorkspaceService

sync_app = typer.Typer(name="sync", help="Synchronize a workspace with the cloud")
console = Console()

PATH_OPTION = typer.Option(
    Path("."),
    "--path",
    "-p",
    help="Workspace root directory",
    exists=True,
    file_okay=False,
    resolve_path=True,
)


def _require_login(auth: AuthService) -> None:
    if not auth.is_authenticated():
        console.print("[red]Not logged in.[/red] Log in with:")
        console.print("  grid-cloud auth login")
        raise typer.Exit(code=1)


def _render_report(report: CycleReport) -> None:
    """Render the end-of-cycle report."""
    if report.status == CycleStatus.SKIPPED:
        console.print(f"[yellow]Sync skipped: {report.error_message}[/yellow]")
        return

    if report.success:
        console.print("[green]✓ Workspace synced.[/green]")
    else:
        console.print(f"[red]✗ Sync failed ({report.error_kind}).[/red]")
        if report.error_kind == "auth":
            console.print(
                "[dim]Workspace Sync requires Pro tier. Please upgrade on grideditor.com[/dim]"
            )
        if report.error_message:
            console.print(f"[dim]{report.error_message}[/dim]")

    if report.accepted:
        console.print(f"  Pushed: {len(report.accepted)} files")
    if report.downloaded:
        console.print(f"  Pulled: {len(report.downloaded)} files")
    if report.success and not report.accepted and not report.downloaded and not report.rejected:
        console.print("  No changes to synchronize.")

    if report.rejected or report.skipped_paths:
        table = Table(title="Not Synced", show_header=True, header_style="bold yellow")
        table.add_column("Path", style="cyan")
        table.add_column("Reason", style="white")
        for path, reason in report.rejected + report.skipped_paths:
            table.add_row(path, reason)
        console.print(table)

    if report.had_conflicts:
        console.print(
            f"\n[yellow]Local edits overwritten by the server copy "
            f"({len(report.overwritten)}):[/yellow]"
        )
        for path in report.overwritten:
            console.print(f"  {path}")


def _render_changes(changes: ChangeSet) -> None:
    """Render pending changes table."""
    if not changes:
        console.print("[green]No pending changes.[/green]")
        return

    table = Table(title="Pending Changes", show_header=True, header_style="bold yellow")
    table.add_column("Change", style="cyan")
    table.add_column("Path", style="white")
    for change in changes:
        table.add_row(change.kind.value, change.path)
    console.print(table)
    console.print(f"\n[yellow]Total pending changes: {len(changes)}[/yellow]")


@sync_app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    path: Path = PATH_OPTION,
    create: bool = typer.Option(
        False, "--create", help="Register the workspace in the cloud if it is missing"
    ),
) -> None:
    """Run one sync cycle (push local changes, pull remote ones)."""
    if ctx.invoked_subcommand is None:
        auth = AuthService()
        _require_login(auth)
        anyio.run(_sync_async, auth, path, create)


async def _sync_async(auth: AuthService, path: Path, create: bool) -> None:
    console.print(f"[cyan]Syncing {path}...[/cyan]")

    service = WorkspaceService(
        auth,
        path,
        confirm_create=(lambda name: create) if create else None,
    )
    try:
        report = await service.sync_now()
        registered = service.current_workspace() is not None
    finally:
        service.close()

    _render_report(report)
    if report.status == CycleStatus.SKIPPED and not create and not registered:
        console.print("[dim]Use --create to register this folder as a cloud workspace.[/dim]")
    if report.status == CycleStatus.FAILED:
        raise typer.Exit(code=1)


@sync_app.command("status")
def sync_status(path: Path = PATH_OPTION) -> None:
    """Show the workspace cursor and pending local changes."""
    cache = CacheManager()
    try:
        workspace = cache.get_workspace_for_root(path)
        if workspace is None:
            console.print(f"[yellow]{path} is not registered as a cloud workspace.[/yellow]")
            return

        console.print(f"[green]Workspace: {workspace.name} ({workspace.workspace_id})[/green]")
        console.print(f"Cursor: [dim]{workspace.last_synced_at or 'never synced'}[/dim]")
        if workspace.needs_resync:
            console.print("[yellow]Last sync was interrupted; the next sync will retry it.[/yellow]")

        tracker = cache.tracker(workspace.workspace_id)
        unconfirmed = tracker.pending()
        if unconfirmed:
            console.print(
                f"[yellow]{len(unconfirmed)} change(s) sent but not yet confirmed "
                "by the server:[/yellow]"
            )
            for record in unconfirmed:
                state = "deletion" if record.tombstone else "upload"
                console.print(f"  {record.path} [dim]({state})[/dim]")

        detection = ChangeDetector(path, tracker).detect()
        _render_changes(detection.changes)
    finally:
        cache.close()


@sync_app.command("reset")
def sync_reset(
    path: Path = PATH_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Forget local sync state so the next sync starts from scratch."""
    cache = CacheManager()
    try:
        workspace = cache.get_workspace_for_root(path)
        if workspace is None:
            console.print(f"[yellow]{path} is not registered as a cloud workspace.[/yellow]")
            raise typer.Exit(code=1)
        if not yes:
            typer.confirm("Forget all sync state for this workspace?", abort=True)
        removed = cache.reset_workspace(workspace)
    finally:
        cache.close()
    console.print(f"[green]✓ Sync state reset ({removed} file records removed).[/green]")


@sync_app.command("watch")
def sync_watch(
    path: Path = PATH_OPTION,
    interval: float | None = typer.Option(
        None, "--interval", "-i", help="Seconds between syncs (default from config)"
    ),
) -> None:
    """Sync now and then periodically until interrupted."""
    auth = AuthService()
    _require_login(auth)
    try:
        anyio.run(_watch_async, auth, path, interval or get_sync_interval())
    except KeyboardInterrupt:
        console.print("\n[cyan]Stopped watching.[/cyan]")


async def _watch_async(auth: AuthService, path: Path, interval: float) -> None:
    service = WorkspaceService(auth, path)
    try:
        _render_report(await service.sync_now())
        service.events.subscribe(events.CYCLE_SUCCEEDED, _render_report)
        service.events.subscribe(events.CYCLE_FAILED, _render_report)
        service.start_auto_sync(interval)
        console.print(f"[cyan]Watching {path} (every {interval:.0f}s). Press Ctrl+C to stop.[/cyan]")
        while service.auto_sync_running:
            await anyio.sleep(1)
    finally:
        service.close()

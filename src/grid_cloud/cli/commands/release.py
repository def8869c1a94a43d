"""Release publishing command."""

from pathlib import Path

import anyio
import typer
from rich.console import Console

from grid_cloud.exceptions import GridCloudError
from grid_cloud.release import build_release, get_api_secret, publish_release

release_app = typer.Typer(name="release", help="Publish release artifacts")
console = Console()


@release_app.command("publish")
def release_publish(
    version: str = typer.Argument(..., help="Release version, e.g. 0.9.1"),
    file_path: Path = typer.Argument(..., help="Build artifact to register"),
    channel: str = typer.Option("stable", "--channel", help="stable or insiders"),
    platform: str = typer.Option("windows", "--platform", help="windows, darwin or linux"),
    arch: str = typer.Option("x64", "--arch", help="x64 or arm64"),
    repo: str | None = typer.Option(None, "--repo", help="GitHub repository, e.g. owner/name"),
) -> None:
    """Checksum an artifact and register it with the releases API.

    Requires the GRID_API_SECRET environment variable.
    """
    console.print(f"Processing release for GRID v{version} ({channel})...")
    try:
        secret = get_api_secret()
        console.print("Calculating checksum...")
        release = build_release(version, file_path, channel, platform, arch, repo)
        console.print(f"SHA256: {release.sha256}")
        if not repo:
            console.print("[yellow]No --repo provided, using generic download location.[/yellow]")
        console.print("Publishing to website API...")
        anyio.run(publish_release, release, secret)
    except (GridCloudError, FileNotFoundError) as e:
        console.print(f"[red]✗ Failed to publish release:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print("[green]✓ Release published successfully![/green]")

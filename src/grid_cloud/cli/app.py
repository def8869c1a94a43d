"""Main CLI application using Typer."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from grid_cloud import __version__
from grid_cloud.cli.commands.auth import auth_app
from grid_cloud.cli.commands.config import config_app
from grid_cloud.cli.commands.release import release_app
from grid_cloud.cli.commands.sync import sync_app
from grid_cloud.cli.commands.workspaces import workspaces_app

app = typer.Typer(
    name="grid-cloud",
    help="GRID Cloud - account, enterprise config and workspace sync",
    add_completion=False,
)
console = Console()

# Register subcommands
app.add_typer(auth_app, name="auth")
app.add_typer(config_app, name="config")
app.add_typer(sync_app, name="sync")
app.add_typer(workspaces_app, name="workspaces")
app.add_typer(release_app, name="release")


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"GRID Cloud version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """GRID Cloud CLI - keep your workspace in sync with the cloud."""
    configure_logging(verbose)


if __name__ == "__main__":
    app()

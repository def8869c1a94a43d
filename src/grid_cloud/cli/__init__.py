"""Command line interface."""

from grid_cloud.cli.app import app

__all__ = ["app"]

"""GRID Cloud client: authentication, enterprise config and workspace sync."""

__version__ = "0.1.0"

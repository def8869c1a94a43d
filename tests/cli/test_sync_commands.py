"""Tests for sync CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from grid_cloud.cli import app
from grid_cloud.config import set_config_value

runner = CliRunner()


@pytest.fixture
def logged_in() -> None:
    """Store an API key in the isolated config."""
    set_config_value("api_key", "grid_test_key")


def test_sync_requires_login(workspace_root: Path) -> None:
    """Test syncing while logged out."""
    result = runner.invoke(app, ["sync", "--path", str(workspace_root)])

    assert result.exit_code == 1
    assert "Not logged in" in result.stdout


def test_sync_unregistered_workspace(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test an unknown folder is skipped with a hint."""
    result = runner.invoke(app, ["sync", "--path", str(workspace_root)])

    assert result.exit_code == 0
    assert "Sync skipped" in result.stdout
    assert "--create" in result.stdout
    assert patch_sync_client.workspaces == []


def test_sync_create_and_push(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test registering a folder and pushing its files."""
    (workspace_root / "main.py").write_text("print('hi')")

    result = runner.invoke(app, ["sync", "--path", str(workspace_root), "--create"])

    assert result.exit_code == 0
    assert "Workspace synced" in result.stdout
    assert "Pushed: 1 files" in result.stdout
    assert patch_sync_client.files == {"main.py": b"print('hi')"}


def test_sync_pull(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test pulling a file written by another client."""
    patch_sync_client.add_workspace("ws-1", "project")
    patch_sync_client.write("README.md", b"# Project")

    result = runner.invoke(app, ["sync", "--path", str(workspace_root)])

    assert result.exit_code == 0
    assert "Pulled: 1 files" in result.stdout
    assert (workspace_root / "README.md").read_bytes() == b"# Project"


def test_sync_no_changes(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test a second sync reports nothing to do."""
    patch_sync_client.add_workspace("ws-1", "project")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])

    result = runner.invoke(app, ["sync", "--path", str(workspace_root)])

    assert result.exit_code == 0
    assert "No changes to synchronize" in result.stdout


def test_sync_requires_pro_tier(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test a tier refusal fails the command with an upgrade hint."""
    patch_sync_client.add_workspace("ws-1", "project")
    patch_sync_client.force_status = 402

    result = runner.invoke(app, ["sync", "--path", str(workspace_root)])

    assert result.exit_code == 1
    assert "Sync failed (auth)" in result.stdout
    assert "Pro tier" in result.stdout


def test_sync_status(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test status shows pending changes after a sync."""
    patch_sync_client.add_workspace("ws-1", "project")
    (workspace_root / "a.txt").write_text("a")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])

    result = runner.invoke(app, ["sync", "status", "--path", str(workspace_root)])
    assert result.exit_code == 0
    assert "ws-1" in result.stdout
    assert "No pending changes" in result.stdout

    (workspace_root / "b.txt").write_text("b")
    result = runner.invoke(app, ["sync", "status", "--path", str(workspace_root)])
    assert "Pending Changes" in result.stdout
    assert "Total pending changes: 1" in result.stdout


def test_sync_status_unconfirmed_deletion(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test status lists a deletion the server has not confirmed."""
    patch_sync_client.add_workspace("ws-1", "project")
    (workspace_root / "a.txt").write_text("a")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])
    (workspace_root / "a.txt").unlink()
    patch_sync_client.ignore.add("a.txt")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])

    result = runner.invoke(app, ["sync", "status", "--path", str(workspace_root)])

    assert result.exit_code == 0
    assert "1 change(s) sent but not yet confirmed" in result.stdout
    assert "a.txt (deletion)" in result.stdout
    assert "No pending changes" in result.stdout


def test_sync_status_unregistered(workspace_root: Path) -> None:
    """Test status for a folder that was never synced."""
    result = runner.invoke(app, ["sync", "status", "--path", str(workspace_root)])

    assert result.exit_code == 0
    assert "not registered" in result.stdout


def test_sync_reset(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test reset forgets file records and the cursor."""
    patch_sync_client.add_workspace("ws-1", "project")
    (workspace_root / "a.txt").write_text("a")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])

    result = runner.invoke(app, ["sync", "reset", "--path", str(workspace_root), "--yes"])

    assert result.exit_code == 0
    assert "1 file records removed" in result.stdout

    status = runner.invoke(app, ["sync", "status", "--path", str(workspace_root)])
    assert "never synced" in status.stdout


def test_sync_reset_aborted(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test reset asks for confirmation."""
    patch_sync_client.add_workspace("ws-1", "project")
    runner.invoke(app, ["sync", "--path", str(workspace_root)])

    result = runner.invoke(app, ["sync", "reset", "--path", str(workspace_root)], input="n\n")

    assert result.exit_code == 1


def test_workspaces_list(logged_in, patch_sync_client, workspace_root: Path) -> None:
    """Test listing cloud workspaces."""
    patch_sync_client.add_workspace("ws-1", "project")
    patch_sync_client.add_workspace("ws-2", "other")

    result = runner.invoke(app, ["workspaces", "list"])

    assert result.exit_code == 0
    assert "Cloud Workspaces" in result.stdout
    assert "ws-2" in result.stdout


def test_workspaces_list_empty(logged_in, patch_sync_client) -> None:
    """Test listing when there are no workspaces."""
    result = runner.invoke(app, ["workspaces", "list"])

    assert result.exit_code == 0
    assert "No cloud workspaces yet" in result.stdout

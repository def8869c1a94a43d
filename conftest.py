"""Pytest configuration for running the suite from a source checkout.

Puts ``src`` on the import path and keeps every test away from the real
``~/.config/grid-cloud`` directory and from API overrides in the caller's
environment.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent
SRC_PATH = PROJECT_ROOT / "src"


if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Rich consoles are created at import time; give them a wide terminal so long
# temporary paths in CLI output are not soft-wrapped under CliRunner
os.environ.setdefault("COLUMNS", "200")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the home directory at a temporary one and clear GRID_* variables."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    for name in ("GRID_API_BASE_URL", "GRID_API_URL", "GRID_API_SECRET"):
        monkeypatch.delenv(name, raising=False)
    return home

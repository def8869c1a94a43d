"""Shared fixtures: in-memory caches, a credential stub and a fake sync server."""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from grid_cloud.cache.manager import CacheManager
from grid_cloud.cache.models import CacheBase
from grid_cloud.events import EventBus


@pytest.fixture
def make_cache() -> Iterator[Callable[[], CacheManager]]:
    """Factory for cache managers, each backed by its own in-memory database."""
    managers: list[CacheManager] = []

    def _make() -> CacheManager:
        # One shared connection, so worker threads see the same in-memory database
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        CacheBase.metadata.create_all(engine)
        SessionLocal = sessionmaker(bind=engine)
        with (
            patch("grid_cloud.cache.repositories.get_cache_session", side_effect=SessionLocal),
            patch("grid_cloud.cache.repositories.init_cache_db"),
        ):
            manager = CacheManager()
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.close()


@pytest.fixture
def cache_manager(make_cache: Callable[[], CacheManager]) -> CacheManager:
    """A cache manager on a fresh in-memory database."""
    return make_cache()


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """An empty local workspace directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


class StubAuth:
    """Credential provider with a fixed API key."""

    def __init__(self, api_key: str | None = "grid_test_key") -> None:
        self.api_key = api_key
        self.events = EventBus()

    def get_credential(self) -> str | None:
        return self.api_key


@pytest.fixture
def auth() -> StubAuth:
    """A logged-in credential provider."""
    return StubAuth()


def sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeSyncServer:
    """In-process implementation of the workspace sync API.

    Every server-side write gets a sequence number; the cursor is the last
    sequence number a client has seen. A path changed since the client's
    cursor and also pushed with different content is a conflict that the
    server wins. Paths in ``ignore`` are dropped without an answer and
    ``extra_downloads`` are appended to every response as they are.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.log: list[tuple[int, str]] = []
        self.seq = 0
        self.workspaces: list[dict[str, Any]] = []
        self.reject: dict[str, str] = {}
        self.ignore: set[str] = set()
        self.extra_downloads: list[dict[str, Any]] = []
        self.force_status: int | None = None
        self.fail_requests = 0
        self.sync_calls = 0
        self.requests: list[dict[str, Any]] = []
        self.responses: list[dict[str, Any]] = []

    def write(self, path: str, data: bytes | None) -> None:
        """Change a file on the server side (``None`` deletes it)."""
        self.seq += 1
        if data is None:
            self.files.pop(path, None)
        else:
            self.files[path] = data
        self.log.append((self.seq, path))

    def add_workspace(self, workspace_id: str, name: str) -> dict[str, Any]:
        workspace = {"id": workspace_id, "name": name, "settings": {}, "last_synced_at": None}
        self.workspaces.append(workspace)
        return workspace

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.fail_requests:
            self.fail_requests -= 1
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/workspaces" and request.method == "GET":
            return httpx.Response(200, json={"workspaces": self.workspaces})
        if path == "/workspaces" and request.method == "POST":
            body = json.loads(request.content)
            workspace = self.add_workspace(f"ws-{len(self.workspaces) + 1}", body["name"])
            return httpx.Response(201, json={"workspace": workspace})
        if path.endswith("/sync"):
            self.sync_calls += 1
            if self.force_status is not None:
                return httpx.Response(
                    self.force_status, json={"message": "Upgrade to Pro to use this feature"}
                )
            body = json.loads(request.content)
            self.requests.append(body)
            response = self.apply(body)
            response["downloads"].extend(self.extra_downloads)
            self.responses.append(response)
            # json.dumps escapes non-ASCII, so malformed text survives the wire
            return httpx.Response(
                200,
                content=json.dumps(response).encode("ascii"),
                headers={"content-type": "application/json"},
            )
        return httpx.Response(404, json={"message": "not found"})

    def apply(self, body: dict[str, Any]) -> dict[str, Any]:
        cursor = int(body["cursor"]) if body.get("cursor") else 0
        changed_since = {p for seq, p in self.log if seq > cursor}
        accepted: list[str] = []
        rejected: list[dict[str, str]] = []
        settled: set[str] = set()

        for change in body["changes"]:
            path = change["path"]
            if path in self.ignore:
                continue
            if path in self.reject:
                rejected.append({"path": path, "reason": self.reject[path]})
                continue
            current = self.files.get(path)
            if change["kind"] == "deleted":
                if path in changed_since and current is not None:
                    continue
                if current is not None:
                    self.write(path, None)
                accepted.append(path)
                settled.add(path)
                continue
            current_fp = sha(current) if current is not None else None
            if path in changed_since and current_fp != change["fingerprint"]:
                continue
            if current_fp != change["fingerprint"]:
                self.write(path, base64.b64decode(change["content"]))
            accepted.append(path)
            settled.add(path)

        downloads: list[dict[str, Any]] = []
        for path in sorted(changed_since - settled):
            data = self.files.get(path)
            if data is None:
                downloads.append({"path": path, "deleted": True})
            else:
                downloads.append(
                    {
                        "path": path,
                        "content": base64.b64encode(data).decode("ascii"),
                        "encoding": "base64",
                        "fingerprint": sha(data),
                    }
                )

        return {
            "accepted": accepted,
            "rejected": rejected,
            "downloads": downloads,
            "cursor": str(self.seq),
        }


@pytest.fixture
def fake_server() -> FakeSyncServer:
    """A fake sync server with no files."""
    return FakeSyncServer()


@pytest.fixture
def patch_sync_client(fake_server: FakeSyncServer) -> Iterator[FakeSyncServer]:
    """Route every SyncClient request to the fake server."""

    def _create_client(api_key: str | None = None, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url="http://test",
            transport=httpx.MockTransport(fake_server.handle),
        )

    with patch("grid_cloud.sync.protocol.create_client", side_effect=_create_client):
        yield fake_server

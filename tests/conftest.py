"""Shared test fixtures for the trackit test suite."""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from trackit.core.config import Settings
from trackit.core.database import create_engine, create_session_maker, init_db
from trackit.core.runtime import Runtime
from trackit.models.metric_types import METRIC_TYPES

BASE_URL = "http://trackit.test"


def _json(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


@dataclass
class FakeTrackitServer:
    """
    In-memory stand-in for the remote API, served through httpx.MockTransport.

    Every request is recorded in `calls` as (method, path).
    """

    users: dict[str, dict] = field(default_factory=lambda: {
        "alice": {"id": 1, "password": "secret", "email": "alice@example.com"},
    })
    metrics: dict[str, dict] = field(default_factory=dict)
    images: dict[str, dict] = field(default_factory=dict)
    valid_access_tokens: set[str] = field(default_factory=set)
    refresh_tokens: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    auth_headers: list[Optional[str]] = field(default_factory=list)

    offline: bool = False
    timeout: bool = False
    reject_refresh: bool = False
    refresh_delay: float = 0.0
    always_unauthorized: bool = False
    reject_logins: bool = False
    fail_logout: bool = False
    fail_creates: bool = False
    create_gate: Optional[asyncio.Event] = None
    delete_gate: Optional[asyncio.Event] = None
    unreachable_paths: set[str] = field(default_factory=set)

    _counter: int = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def expire_access_tokens(self) -> None:
        self.valid_access_tokens.clear()

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def _issue_access_token(self) -> str:
        token = self._next("access-")
        self.valid_access_tokens.add(token)
        return token

    def _authorized(self, request: httpx.Request) -> bool:
        if self.always_unauthorized:
            return False
        header = request.headers.get("Authorization", "")
        return header.startswith("Bearer ") and header[len("Bearer "):] in self.valid_access_tokens

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        self.auth_headers.append(request.headers.get("Authorization"))
        await request.aread()

        if self.offline or path in self.unreachable_paths:
            raise httpx.ConnectError("Network is unreachable", request=request)
        if self.timeout:
            raise httpx.ReadTimeout("Read timed out", request=request)

        if path == "/":
            return httpx.Response(200, text="ok")
        if path.startswith("/auth/") or path.startswith("/user/"):
            return await self._handle_auth(method, path, request)
        if not self._authorized(request):
            return _json(401, {"success": False, "message": "Unauthorized"})
        if path.startswith("/api/metrics"):
            return await self._handle_metrics(method, path, request)
        if path.startswith("/api/images"):
            return self._handle_images(method, path, request)
        return _json(404, {"message": "No route"})

    async def _handle_auth(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")

        if path == "/auth/login":
            user = self.users.get(body.get("username"))
            if self.reject_logins or user is None or user["password"] != body.get("password"):
                return _json(401, {"success": False, "message": "Invalid username or password"})
            refresh = self._next("refresh-")
            self.refresh_tokens[refresh] = body["username"]
            return _json(200, {
                "success": True,
                "accessToken": self._issue_access_token(),
                "refreshToken": refresh,
                "user": {"id": user["id"], "username": body["username"], "email": user["email"]},
            })

        if path == "/user/register":
            if body.get("username") in self.users:
                return _json(409, {"success": False, "message": "Username already taken"})
            user_id = len(self.users) + 1
            self.users[body["username"]] = {"id": user_id, "password": body["password"], "email": body["email"]}
            return _json(201, {
                "success": True,
                "message": "User created",
                "user": {"id": user_id, "username": body["username"], "email": body["email"]},
            })

        if path == "/auth/refresh":
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            if self.reject_refresh or body.get("refreshToken") not in self.refresh_tokens:
                return _json(401, {"success": False, "message": "Invalid refresh token"})
            return _json(200, {"success": True, "accessToken": self._issue_access_token()})

        if path == "/auth/logout":
            if self.fail_logout:
                return _json(500, {"success": False, "message": "Internal error"})
            self.valid_access_tokens.discard(request.headers.get("Authorization", "")[len("Bearer "):])
            return _json(200, {"success": True})

        return _json(404, {"message": "No route"})

    async def _handle_metrics(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if path == "/api/metrics/types" and method == "GET":
            return _json(200, {
                "success": True,
                "types": [{"id": m.server_type_id, "name": m.local_name, "unit": m.unit} for m in METRIC_TYPES],
            })

        if path == "/api/metrics" and method == "GET":
            limit = int(request.url.params.get("limit", 100))
            offset = int(request.url.params.get("offset", 0))
            entries = list(self.metrics.values())
            return _json(200, {"success": True, "entries": entries[offset:offset + limit], "total": len(entries)})

        if path == "/api/metrics" and method == "POST":
            if self.create_gate is not None:
                await self.create_gate.wait()
            if self.fail_creates:
                return _json(500, {"success": False, "message": "Database unavailable"})
            body = json.loads(request.content)
            entry_id = self._next("srv-")
            self.metrics[entry_id] = {
                "id": entry_id,
                "metric_type_id": body["metric_type_id"],
                "value": body["value"],
                "date": body["date"],
                "is_apple_health": body.get("is_apple_health", False),
            }
            return _json(201, {"success": True, "entryId": entry_id})

        entry_id = path.rsplit("/", 1)[-1]
        if method == "DELETE" and self.delete_gate is not None:
            await self.delete_gate.wait()
        if entry_id not in self.metrics:
            return _json(404, {"success": False, "message": "Entry not found"})

        if method == "PUT":
            body = json.loads(request.content)
            self.metrics[entry_id].update(value=body["value"], date=body["date"])
            return _json(200, {"success": True, "entryId": entry_id})

        if method == "DELETE":
            del self.metrics[entry_id]
            return _json(200, {"success": True})

        return _json(405, {"message": "Method not allowed"})

    def _handle_images(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if path == "/api/images" and method == "GET":
            images = list(self.images.values())
            return _json(200, {"success": True, "images": images, "total": len(images)})

        if path == "/api/images" and method == "POST":
            match = re.search(rb'name="imageTypeId"\r\n\r\n(\d+)', request.content)
            self._counter += 1
            image_id = self._counter
            self.images[str(image_id)] = {
                "id": image_id,
                "image_type_id": int(match.group(1)) if match else 8,
                "filename": f"upload_{image_id}.jpg",
                "date": "2024-01-01T00:00:00.000Z",
                "file_size": len(request.content),
                "mime_type": "image/jpeg",
            }
            return _json(201, {"id": image_id})

        parts = path.split("/")
        image_id = parts[3] if len(parts) > 3 else ""
        if image_id not in self.images:
            return _json(404, {"success": False, "message": "Image not found"})

        if method == "GET" and path.endswith("/download"):
            return httpx.Response(200, content=b"\xff\xd8fake-jpeg", headers={"content-type": "image/jpeg"})

        if method == "DELETE":
            del self.images[image_id]
            return _json(200, {"success": True})

        return _json(405, {"message": "Method not allowed"})


@pytest.fixture
def fake_server():
    return FakeTrackitServer()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "trackit.db"),
        api_base_url=BASE_URL,
        photos_dir=str(tmp_path / "photos"),
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """
    Provide a session factory over a fresh SQLite file.

    Each test gets a clean database in its own temp directory.
    """
    engine = create_engine(str(tmp_path / "queue.db"))
    await init_db(engine)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def runtime(settings, fake_server):
    """Fully wired runtime talking to the fake server."""
    rt = await Runtime.create(settings, transport=fake_server.transport())
    yield rt
    await rt.close()


@pytest_asyncio.fixture
async def logged_in(runtime):
    """Runtime with alice logged in."""
    await runtime.auth.login("alice", "secret")
    return runtime

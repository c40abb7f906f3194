"""Tests for the local control API."""

import httpx
import pytest
import pytest_asyncio

from trackit.main import app
from trackit.models.sync import SyncState


@pytest_asyncio.fixture
async def client(runtime):
    """HTTP client bound to the app, with the test runtime installed."""
    app.state.runtime = runtime
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def login(client):
    response = await client.post("/api/auth/login", json={"username": "alice", "password": "secret"})
    assert response.status_code == 200
    return response


class TestAuthEndpoints:
    """Tests for /api/auth."""

    @pytest.mark.asyncio
    async def test_status_logged_out(self, client):
        response = await client.get("/api/auth/status")

        assert response.status_code == 200
        assert response.json() == {"is_logged_in": False, "user": None}

    @pytest.mark.asyncio
    async def test_login(self, client):
        response = await login(client)

        data = response.json()
        assert data["is_logged_in"] is True
        assert data["user"]["username"] == "alice"

    @pytest.mark.asyncio
    async def test_login_rejected(self, client):
        response = await client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login_offline(self, client, fake_server):
        fake_server.offline = True

        response = await client.post("/api/auth/login", json={"username": "alice", "password": "secret"})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_register(self, client):
        response = await client.post(
            "/api/auth/register",
            json={"username": "bob", "password": "hunter22", "email": "bob@example.com"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_logged_in"] is True
        assert data["user"]["username"] == "bob"

    @pytest.mark.asyncio
    async def test_register_without_auto_login(self, client, fake_server):
        fake_server.reject_logins = True

        response = await client.post(
            "/api/auth/register",
            json={"username": "bob", "password": "hunter22", "email": "bob@example.com"},
        )

        assert response.status_code == 200
        assert response.json()["is_logged_in"] is False
        assert response.json()["message"] == "Registration successful, please log in"

    @pytest.mark.asyncio
    async def test_logout(self, client):
        await login(client)

        response = await client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json()["is_logged_in"] is False


class TestEntryEndpoints:
    """Tests for /api/entries."""

    @pytest.mark.asyncio
    async def test_enqueue_metric_by_name(self, client):
        response = await client.post(
            "/api/entries/metrics",
            json={"local_id": "w1", "metric_name": "Weight", "value": 80.5, "date": "2024-01-01T08:30:00Z"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["local_id"] == "w1"
        assert data["status"] == "PENDING"
        assert data["payload"]["metric_type_id"] == 1
        assert data["payload"]["date"] == "2024-01-01T08:30:00.000Z"

    @pytest.mark.asyncio
    async def test_enqueue_metric_generates_local_id(self, client):
        response = await client.post(
            "/api/entries/metrics",
            json={"metric_type_id": 5, "value": 90, "date": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 201
        assert len(response.json()["local_id"]) == 32

    @pytest.mark.asyncio
    async def test_calculated_metric_rejected(self, client):
        response = await client.post(
            "/api/entries/metrics",
            json={"metric_name": "BMI", "value": 24.1, "date": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_metric_type_required(self, client):
        response = await client.post("/api/entries/metrics", json={"value": 1, "date": "2024-01-01T00:00:00Z"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_enqueue_image_missing_file(self, client, tmp_path):
        response = await client.post(
            "/api/entries/images",
            json={"file_path": str(tmp_path / "nope.jpg"), "image_type_id": 1, "date": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_enqueue_image(self, client, tmp_path):
        photo = tmp_path / "side.jpg"
        photo.write_bytes(b"jpeg")

        response = await client.post(
            "/api/entries/images",
            json={"local_id": "p1", "file_path": str(photo), "image_type_id": 3, "date": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 201
        assert response.json()["kind"] == "image"

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client):
        for local_id in ("a", "b"):
            await client.post(
                "/api/entries/metrics",
                json={"local_id": local_id, "metric_name": "Waist", "value": 80, "date": "2024-01-01T00:00:00Z"},
            )
        await client.delete("/api/entries/b")

        everything = await client.get("/api/entries")
        deleted = await client.get("/api/entries", params={"status": "DELETED_LOCALLY"})

        assert [e["local_id"] for e in everything.json()] == ["a", "b"]
        assert [e["local_id"] for e in deleted.json()] == ["b"]

    @pytest.mark.asyncio
    async def test_delete_unknown(self, client):
        response = await client.delete("/api/entries/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_metric_types(self, client):
        response = await client.get("/api/entries/types")

        names = [t["local_name"] for t in response.json()]
        assert names[0] == "Weight"
        assert "BMI" not in names
        assert len(names) == 12


class TestSyncEndpoints:
    """Tests for /api/sync."""

    @pytest.mark.asyncio
    async def test_status(self, client):
        response = await client.get("/api/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["is_syncing"] is False
        assert data["pending_uploads"] == 0

    @pytest.mark.asyncio
    async def test_trigger_sync(self, client, runtime, fake_server):
        await login(client)
        await client.post(
            "/api/entries/metrics",
            json={"local_id": "a", "metric_name": "Weight", "value": 80, "date": "2024-01-01T00:00:00Z"},
        )

        response = await client.post("/api/sync")

        assert response.json() == {"message": "Sync started", "started": True}
        await runtime.orchestrator.wait_idle()
        assert fake_server.count("POST", "/api/metrics") == 1
        status = (await client.get("/api/sync/status")).json()
        assert status["pending_uploads"] == 0

    @pytest.mark.asyncio
    async def test_trigger_while_syncing(self, client, runtime):
        runtime.orchestrator._set_state(SyncState(is_syncing=True), auto_trigger=False)

        response = await client.post("/api/sync")

        assert response.json()["started"] is False

    @pytest.mark.asyncio
    async def test_connectivity_and_clear_error(self, client):
        # Logged out manual sync leaves an error behind
        await client.post("/api/sync")
        assert (await client.get("/api/sync/status")).json()["error_message"] == "Not logged in"

        offline = await client.post("/api/sync/connectivity", json={"online": False})
        cleared = await client.post("/api/sync/clear-error")

        assert offline.json()["is_online"] is False
        assert cleared.json()["error_message"] is None

    @pytest.mark.asyncio
    async def test_history(self, client, runtime):
        await login(client)
        await runtime.orchestrator.perform_sync()

        response = await client.get("/api/sync/history", params={"limit": 5})

        assert response.status_code == 200
        history = response.json()
        assert len(history) == 1
        assert history[0]["status"] == "success"

"""Tests for the HTTP surface."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from budlink.main import app
from budlink.routers import ble as ble_router
from budlink.services.connection_service import ConnectionService
from budlink.services.discovery_service import DiscoveryService
from budlink.services.task_channel import TaskChannel
from conftest import FakePlatform, dev


@pytest.fixture
def services(monkeypatch, tmp_path, fast_warmup):
    platforms = []

    def make_platform():
        platform = FakePlatform(batches=[(0.01, [dev("A", "Bud L"), dev("B")]), (0.05, [dev("A"), dev("C", "Bud R")])])
        platforms.append(platform)
        return platform

    discovery = DiscoveryService(platform_factory=make_platform)
    channel = TaskChannel(str(tmp_path / "task_data.json"))
    connection = ConnectionService(max_retries=1, retry_delay=0)
    monkeypatch.setattr(ble_router, "discovery_service", discovery)
    monkeypatch.setattr(ble_router, "task_channel", channel)
    monkeypatch.setattr(ble_router, "connection_service", connection)
    return discovery, channel, connection


@pytest.fixture
def client():
    return TestClient(app)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_unknown_api_path(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["path"] == "/api/nope"


class TestDevices:
    def test_scan_returns_unique_devices(self, client, services):
        response = client.get("/api/ble/devices", params={"timeout": 0.3, "keywords": ["Bud"]})

        assert response.status_code == 200
        body = response.json()
        assert [d["id"] for d in body["devices"]] == ["A", "B", "C"]
        assert body["devices"][1]["name"] == "Unknown"
        assert body.get("error") is None

    def test_scan_start_failure_reported(self, client, services, monkeypatch):
        discovery, _, _ = services
        monkeypatch.setattr(
            discovery, "platform_factory",
            lambda: FakePlatform(start_error=RuntimeError("Bluetooth off")),
        )

        response = client.get("/api/ble/devices", params={"timeout": 0.3})

        assert response.status_code == 200
        assert response.json()["devices"] == []
        assert "Bluetooth off" in response.json()["error"]

    def test_invalid_timeout_rejected(self, client, services):
        assert client.get("/api/ble/devices", params={"timeout": -1}).status_code == 422
        assert client.post("/api/ble/scan/start", json={"timeout": 0}).status_code == 422

    def test_stop_without_scan(self, client, services):
        response = client.post("/api/ble/scan/stop")
        assert response.json() == {"success": False, "message": "No active scan"}


class TestPair:
    def test_unknown_device_is_404(self, client, services):
        response = client.post("/api/ble/pair", json={"device_id": "ZZ"})
        assert response.status_code == 404

    def test_pair_device_from_last_scan(self, client, services):
        _, channel, _ = services
        client.get("/api/ble/devices", params={"timeout": 0.3})

        response = client.post("/api/ble/pair", json={"device_id": "A"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "device_id": "A", "message": "Connecting to Bud L"}
        assert channel._load() == {"deviceRemoteId": "A"}

    def test_pair_failure_is_reported_not_raised(self, client, services, monkeypatch):
        client.get("/api/ble/devices", params={"timeout": 0.3})
        broken = MagicMock()
        broken.save_data = AsyncMock(side_effect=OSError("read-only"))
        monkeypatch.setattr(ble_router, "task_channel", broken)

        response = client.post("/api/ble/pair", json={"device_id": "C"})

        assert response.status_code == 200
        assert response.json() == {"success": False, "device_id": "C", "message": "Failed to connect to Bud R"}


class TestStatusAndReset:
    def test_status(self, client, services):
        client.get("/api/ble/devices", params={"timeout": 0.3})

        body = client.get("/api/ble/status").json()

        assert body["scan"]["scanning"] is False
        assert body["scan"]["state"] == "closed"
        assert body["scan"]["seen"] == 3
        assert body["connection"]["state"] == "disconnected"
        assert body["connection"]["connected"] is False

    def test_reset_forgets_paired_device(self, client, services):
        _, channel, _ = services
        client.get("/api/ble/devices", params={"timeout": 0.3})
        client.post("/api/ble/pair", json={"device_id": "B"})

        response = client.post("/api/ble/reset")

        assert response.json()["success"] is True
        assert channel._load() == {}

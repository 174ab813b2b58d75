from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from smartlight.core.config import Settings
from smartlight.core.errors import PersistenceError
from smartlight.main import create_app
from smartlight.storage.sqlite_repo import SQLiteRepository


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(sqlite_path=str(tmp_path / "hub.db"), log_file="", **overrides)


@pytest.fixture
def client(tmp_path):
    with TestClient(create_app(_settings(tmp_path))) as c:
        yield c


def test_health(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["counters"]["reconciliations"] == 0


def test_unknown_route_is_404(client: TestClient) -> None:
    resp = client.get("/api/nope")

    assert resp.status_code == 404
    assert resp.json() == {"message": "Route not found"}


def test_telemetry_for_unknown_device_registers_it(client: TestClient) -> None:
    resp = client.post("/api/sensor/dev-42", json={"temperature": 23.5, "humidity": 48})

    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "lightOn": False,
        "config": {"darkThreshold": 400, "autoOffDelay": 60},
    }

    status = client.get("/api/status/dev-42").json()
    assert status["deviceId"] == "dev-42"
    assert status["name"] == "SmartLight"
    assert status["ldrValue"] == 512
    assert status["temperature"] == 23.5
    assert status["config"] == {"darkThreshold": 400, "autoOffDelay": 60}

    readings = client.get("/api/history/dev-42").json()["readings"]
    assert len(readings) == 1
    assert readings[0]["temperature"] == 23.5
    assert readings[0]["humidity"] == 48


def test_dark_motion_push_turns_light_on(client: TestClient) -> None:
    client.get("/api/status/esp32-001")

    resp = client.post("/api/sensor/esp32-001", json={"ldrValue": 300, "motionDetected": True, "uptime": 99})

    assert resp.json()["lightOn"] is True
    logs = client.get("/api/logs/esp32-001").json()["logs"]
    assert sorted(e["type"] for e in logs) == ["light_on", "motion_detected"]
    assert client.get("/api/status/esp32-001").json()["uptimeSeconds"] == 99


def test_toggle_flips_light(client: TestClient) -> None:
    first = client.post("/api/toggle/d1")
    second = client.post("/api/toggle/d1")

    assert first.status_code == 200
    assert first.json()["lightOn"] is True
    assert second.json()["lightOn"] is False
    logs = client.get("/api/logs/d1", params={"limit": 1}).json()["logs"]
    assert [(e["type"], e["message"]) for e in logs] == [("light_off", "Light toggled OFF via dashboard")]


def test_config_update_keeps_missing_fields(client: TestClient) -> None:
    resp = client.post("/api/config/d1", json={"darkThreshold": 350})

    assert resp.status_code == 200
    assert resp.json() == {"config": {"darkThreshold": 350, "autoOffDelay": 60}, "message": "Config updated"}
    logs = client.get("/api/logs/d1").json()["logs"]
    assert logs[0]["type"] == "config_change"
    assert logs[0]["payload"]["old"]["darkThreshold"] == 400


def test_out_of_range_readings_are_recorded(client: TestClient) -> None:
    resp = client.post("/api/sensor/d1", json={"ldrValue": -5, "humidity": 140})

    assert resp.status_code == 200
    status = client.get("/api/status/d1").json()
    assert status["ldrValue"] == -5
    assert status["humidity"] == 140
    readings = client.get("/api/history/d1").json()["readings"]
    assert [(r["ldrValue"], r["humidity"]) for r in readings] == [(-5, 140)]


def test_fractional_auto_off_delay_is_accepted(client: TestClient) -> None:
    resp = client.post("/api/config/d1", json={"autoOffDelay": 30.5})

    assert resp.status_code == 200
    assert resp.json()["config"] == {"darkThreshold": 400, "autoOffDelay": 30.5}
    logs = client.get("/api/logs/d1").json()["logs"]
    assert logs[0]["message"] == "Config updated: threshold=400, delay=30.5"


@pytest.mark.parametrize(
    "path, body",
    [
        ("/api/config/d1", {"darkThreshold": -5}),
        ("/api/sensor/d1", {"ldrValue": "bright"}),
        ("/api/config/d1", {"autoOffDelay": "soon"}),
    ],
)
def test_invalid_bodies_are_400(client: TestClient, path: str, body: dict) -> None:
    resp = client.post(path, json=body)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid request"


def test_persistence_failure_is_500_without_detail(tmp_path) -> None:
    class _BrokenSaveRepo(SQLiteRepository):
        async def save_device(self, device):
            raise PersistenceError("sqlite: disk I/O error at page 7")

    cfg = _settings(tmp_path)
    with TestClient(create_app(cfg, store=_BrokenSaveRepo(cfg.sqlite_path))) as c:
        resp = c.post("/api/toggle/d1")
        health = c.get("/health").json()

    assert resp.status_code == 500
    assert resp.json() == {"message": "Device save failed"}
    assert health["counters"]["persistence_failures"] == 1


def test_device_key_gate(tmp_path) -> None:
    cfg = _settings(tmp_path, require_device_key=True, allowed_devices="esp32-001, esp32-002")
    with TestClient(create_app(cfg)) as c:
        missing = c.post("/api/sensor/esp32-001", json={"temperature": 20})
        unknown = c.post("/api/sensor/rogue", json={"temperature": 20}, headers={"X-Device-Key": "k"})
        ok = c.post("/api/sensor/esp32-002", json={"temperature": 20}, headers={"X-Device-Key": "k"})

    assert missing.status_code == 401
    assert missing.json() == {"message": "No device key provided"}
    assert unknown.status_code == 401
    assert ok.status_code == 200


def test_socket_subscribe_and_receive_update(client: TestClient) -> None:
    client.get("/api/status/esp32-001")
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe", "data": {"deviceId": "esp32-001"}})
        assert ws.receive_json() == {
            "event": "subscribed",
            "data": {"deviceId": "esp32-001", "message": "Subscribed to esp32-001"},
        }

        client.post("/api/sensor/esp32-001", json={"ldrValue": 200, "motionDetected": True})
        frame = ws.receive_json()

    assert frame["event"] == "update"
    data = frame["data"]
    assert data["deviceId"] == "esp32-001"
    assert data["lightOn"] is True
    assert data["event"] == "light_on"
    assert data["message"] == "Auto-ON: LDR=200, motion=True"


def test_socket_config_change_is_broadcast(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe", "data": {"deviceId": "d1"}})
        ws.receive_json()

        client.post("/api/config/d1", json={"autoOffDelay": 30})
        frame = ws.receive_json()

    assert frame["data"]["event"] == "config_change"
    assert frame["data"]["config"] == {"darkThreshold": 400, "autoOffDelay": 30}


def test_socket_rejects_bad_frames_and_stays_open(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"event": "subscribe", "data": {}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "deviceId must be non-empty"}}

        ws.send_json({"event": "dance"})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: dance"}}

        ws.send_json({"event": "subscribe", "data": {"deviceId": "d1"}})
        assert ws.receive_json()["event"] == "subscribed"

        ws.send_json({"event": "unsubscribe"})
        assert ws.receive_json() == {"event": "unsubscribed", "data": {"deviceId": "d1"}}


def test_disconnect_drops_subscription(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe", "data": {"deviceId": "d1"}})
        ws.receive_json()
        assert client.get("/health").json()["subscriptions"] == 1

    deadline = time.monotonic() + 2
    while client.get("/health").json()["subscriptions"] and time.monotonic() < deadline:
        time.sleep(0.02)
    assert client.get("/health").json()["subscriptions"] == 0

from __future__ import annotations

import json
import random

import httpx
import pytest

from smartlight.tools.device_sim import PatternConfig, SimConfig, SimulatedDevice, pattern_value


@pytest.mark.parametrize(
    "cfg, t, expected",
    [
        (PatternConfig(type="manual", baseline=321), 50, 321),
        (PatternConfig(type="sine", baseline=400, amplitude=100, period_s=40), 10, 500),
        (PatternConfig(type="step", step_low=100, step_high=700, step_period_s=60), 10, 100),
        (PatternConfig(type="step", step_low=100, step_high=700, step_period_s=60), 40, 700),
        (PatternConfig(type="ramp", ramp_min=0, ramp_max=1000, ramp_period_s=100), 25, 250),
    ],
)
def test_pattern_values(cfg: PatternConfig, t: float, expected: float) -> None:
    assert pattern_value(cfg, t, random.Random(0)) == pytest.approx(expected)


def test_random_pattern_stays_in_band() -> None:
    cfg = PatternConfig(type="random", baseline=400, amplitude=50)
    rng = random.Random(1)

    values = [pattern_value(cfg, i, rng) for i in range(100)]

    assert all(350 <= v <= 450 for v in values)


def test_push_once_posts_telemetry_and_applies_reply() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"status": "ok", "lightOn": True, "config": {"darkThreshold": 350, "autoOffDelay": 30}},
        )

    cfg = SimConfig(
        base_url="http://hub",
        device_id="esp32-009",
        device_key="k1",
        motion_probability=1.0,
        pattern=PatternConfig(type="manual", baseline=200, noise=0),
    )
    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        device = SimulatedDevice(cfg, client, seed=3)
        device.push_once(t=12.7)

    request = seen[0]
    assert request.url.path == "/api/sensor/esp32-009"
    assert request.headers["X-Device-Key"] == "k1"
    body = json.loads(request.content)
    assert body["ldrValue"] == 200
    assert body["motionDetected"] is True
    assert body["lightOn"] is False
    assert body["uptimeSeconds"] == 12
    assert device.light_on is True
    assert device.dark_threshold == 350
    assert device.auto_off_delay == 30


def test_push_once_raises_on_server_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"message": "Device save failed"}))
    with httpx.Client(transport=transport) as client:
        device = SimulatedDevice(SimConfig(base_url="http://hub"), client)
        with pytest.raises(httpx.HTTPStatusError):
            device.push_once(t=0)

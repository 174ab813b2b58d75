#!/usr/bin/env python3
"""
Simulated light controller.

Pushes telemetry to the hub the way the physical unit does: LDR value from
a configurable pattern, random motion, temperature/humidity jitter and
uptime. Applies the lightOn/config the hub sends back.

Usage:
    python -m smartlight.tools.device_sim                       # defaults
    python -m smartlight.tools.device_sim --pattern step --interval 2
    python -m smartlight.tools.device_sim --device esp32-002 --key secret
"""

from __future__ import annotations

import argparse
import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

import httpx

logger = logging.getLogger(__name__)

PatternType = Literal["manual", "sine", "step", "ramp", "random"]


# ---------------------------------------------------------------------------
# LDR pattern
# ---------------------------------------------------------------------------

@dataclass
class PatternConfig:
    type: PatternType = "sine"
    baseline: float = 450.0
    amplitude: float = 250.0
    period_s: float = 600.0
    noise: float = 10.0
    step_low: float = 200.0
    step_high: float = 700.0
    step_period_s: float = 120.0
    ramp_min: float = 100.0
    ramp_max: float = 900.0
    ramp_period_s: float = 600.0


def pattern_value(p: PatternConfig, t: float, rng: random.Random) -> float:
    """LDR value at `t` seconds into the run, before noise."""
    if p.type == "manual":
        return p.baseline

    if p.type == "sine":
        return p.baseline + p.amplitude * math.sin(2 * math.pi * t / max(p.period_s, 1.0))

    if p.type == "step":
        phase = (t % max(p.step_period_s, 1.0)) / max(p.step_period_s, 1.0)
        return p.step_high if phase >= 0.5 else p.step_low

    if p.type == "ramp":
        phase = (t % max(p.ramp_period_s, 1.0)) / max(p.ramp_period_s, 1.0)
        return p.ramp_min + (p.ramp_max - p.ramp_min) * phase

    if p.type == "random":
        return p.baseline + rng.uniform(-p.amplitude, p.amplitude)

    return p.baseline


# ---------------------------------------------------------------------------
# Simulated device
# ---------------------------------------------------------------------------

@dataclass
class SimConfig:
    base_url: str = "http://localhost:5000"
    device_id: str = "esp32-001"
    device_key: Optional[str] = None
    interval_s: float = 5.0
    motion_probability: float = 0.3
    timeout_s: float = 5.0
    pattern: PatternConfig = field(default_factory=PatternConfig)


class SimulatedDevice:
    def __init__(self, cfg: SimConfig, client: httpx.Client, seed: Optional[int] = None) -> None:
        self.cfg = cfg
        self._client = client
        self._rng = random.Random(seed)
        self._t0 = time.monotonic()
        self.light_on = False
        self.dark_threshold: Optional[float] = None
        self.auto_off_delay: Optional[float] = None

    def sample(self, t: float) -> dict[str, Any]:
        p = self.cfg.pattern
        ldr = pattern_value(p, t, self._rng)
        if p.noise > 0:
            ldr += self._rng.uniform(-p.noise, p.noise)
        return {
            "ldrValue": round(max(0.0, ldr), 1),
            "motionDetected": self._rng.random() < self.cfg.motion_probability,
            "temperature": round(25.0 + self._rng.uniform(-1.5, 1.5), 1),
            "humidity": round(60.0 + self._rng.uniform(-5.0, 5.0), 1),
            "lightOn": self.light_on,
            "uptimeSeconds": int(t),
        }

    def push_once(self, t: Optional[float] = None) -> dict[str, Any]:
        if t is None:
            t = time.monotonic() - self._t0
        body = self.sample(t)
        headers = {"X-Device-Key": self.cfg.device_key} if self.cfg.device_key else {}
        resp = self._client.post(
            f"{self.cfg.base_url}/api/sensor/{self.cfg.device_id}",
            json=body,
            headers=headers,
            timeout=self.cfg.timeout_s,
        )
        resp.raise_for_status()
        data = resp.json()

        self.light_on = bool(data.get("lightOn", self.light_on))
        config = data.get("config") or {}
        self.dark_threshold = config.get("darkThreshold", self.dark_threshold)
        self.auto_off_delay = config.get("autoOffDelay", self.auto_off_delay)

        logger.info(
            "push ldr=%.1f motion=%s -> light=%s threshold=%s",
            body["ldrValue"], body["motionDetected"],
            "ON" if self.light_on else "OFF", self.dark_threshold,
        )
        return data

    def run(self) -> None:
        logger.info("Simulating %s against %s every %.1fs", self.cfg.device_id, self.cfg.base_url, self.cfg.interval_s)
        while True:
            try:
                self.push_once()
            except httpx.HTTPError as e:
                logger.warning("push failed: %s", e)
            time.sleep(self.cfg.interval_s)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Simulated SmartLight controller")
    parser.add_argument("--url", default="http://localhost:5000")
    parser.add_argument("--device", default="esp32-001")
    parser.add_argument("--key", default=None, help="X-Device-Key header value")
    parser.add_argument("--interval", type=float, default=5.0)
    parser.add_argument("--motion", type=float, default=0.3, help="motion probability per push")
    parser.add_argument("--pattern", choices=["manual", "sine", "step", "ramp", "random"], default="sine")
    parser.add_argument("--baseline", type=float, default=450.0)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    cfg = SimConfig(
        base_url=args.url.rstrip("/"),
        device_id=args.device,
        device_key=args.key,
        interval_s=args.interval,
        motion_probability=args.motion,
        pattern=PatternConfig(type=args.pattern, baseline=args.baseline),
    )
    with httpx.Client() as client:
        try:
            SimulatedDevice(cfg, client, seed=args.seed).run()
        except KeyboardInterrupt:
            logger.info("Stopped")


if __name__ == "__main__":
    main()

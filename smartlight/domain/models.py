from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Union

from ..core.timeutil import to_iso


EventType = Literal[
    "motion_detected",
    "light_on",
    "light_off",
    "auto_off",
    "device_online",
    "config_change",
]


@dataclass(frozen=True)
class DeviceConfig:
    dark_threshold: float   # LDR units
    auto_off_delay: float   # seconds

    def to_wire(self) -> dict[str, Any]:
        return {"darkThreshold": self.dark_threshold, "autoOffDelay": self.auto_off_delay}


@dataclass(frozen=True)
class DeviceState:
    light_on: bool
    motion_detected: bool
    ldr_value: float
    temperature: float
    humidity: float
    uptime_seconds: float
    last_seen_at: datetime

    def to_wire(self) -> dict[str, Any]:
        return {
            "lightOn": self.light_on,
            "motionDetected": self.motion_detected,
            "ldrValue": self.ldr_value,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "uptimeSeconds": self.uptime_seconds,
            "lastSeenAt": to_iso(self.last_seen_at),
        }


@dataclass(frozen=True)
class Device:
    device_id: str
    name: str
    config: DeviceConfig
    state: DeviceState
    created_at: datetime


@dataclass(frozen=True)
class DeviceDefaults:
    """Values a device record starts with on first contact."""

    name: str = "SmartLight"
    dark_threshold: float = 400
    auto_off_delay: float = 60
    ldr_value: float = 512
    temperature: float = 25.0
    humidity: float = 60.0

    def new_device(self, device_id: str, now: datetime) -> Device:
        return Device(
            device_id=device_id,
            name=self.name,
            config=DeviceConfig(dark_threshold=self.dark_threshold, auto_off_delay=self.auto_off_delay),
            state=DeviceState(
                light_on=False,
                motion_detected=False,
                ldr_value=self.ldr_value,
                temperature=self.temperature,
                humidity=self.humidity,
                uptime_seconds=0,
                last_seen_at=now,
            ),
            created_at=now,
        )


@dataclass(frozen=True)
class LogEvent:
    ts_utc: datetime
    device_id: str
    type: EventType
    message: str = ""
    payload: Optional[dict[str, Any]] = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "type": self.type,
            "message": self.message,
            "payload": self.payload,
            "timestamp": to_iso(self.ts_utc),
        }


@dataclass(frozen=True)
class SensorReading:
    ts_utc: datetime
    device_id: str
    ldr_value: float
    temperature: float
    humidity: float
    motion_detected: bool
    light_on: bool
    uptime_seconds: float = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "ldrValue": self.ldr_value,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "motionDetected": self.motion_detected,
            "lightOn": self.light_on,
            "uptimeSeconds": self.uptime_seconds,
            "timestamp": to_iso(self.ts_utc),
        }


# --- Policy input/output ---

@dataclass(frozen=True)
class Incoming:
    """Partial update fed to the policy. None means "unchanged"."""

    ldr_value: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    motion_detected: Optional[bool] = None
    light_on: Optional[bool] = None
    uptime_seconds: Optional[float] = None
    manual: bool = False  # dashboard toggle


@dataclass(frozen=True)
class ClassifiedEvent:
    type: EventType
    message: str
    payload: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class PolicyOutcome:
    next_light_on: bool
    automatic: bool
    events: tuple[ClassifiedEvent, ...] = ()


# --- Reconciliation intents ---

@dataclass(frozen=True)
class TelemetryPush:
    ldr_value: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    motion_detected: Optional[bool] = None
    light_on: Optional[bool] = None
    uptime_seconds: Optional[float] = None


@dataclass(frozen=True)
class ManualToggle:
    pass


@dataclass(frozen=True)
class ConfigUpdate:
    dark_threshold: Optional[float] = None
    auto_off_delay: Optional[float] = None


Intent = Union[TelemetryPush, ManualToggle, ConfigUpdate]


@dataclass(frozen=True)
class ReconcileResult:
    device: Device
    events: tuple[LogEvent, ...] = field(default_factory=tuple)
    created: bool = False

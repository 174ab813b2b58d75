from __future__ import annotations
from datetime import datetime
from typing import Any, Protocol, Optional, runtime_checkable
from .models import Device, LogEvent, SensorReading


@runtime_checkable
class DeviceStore(Protocol):
    async def init(self) -> None:
        ...

    async def get_device(self, device_id: str) -> Optional[Device]:
        ...

    async def create_device(self, device: Device) -> Device:
        """Insert if absent; returns the stored record either way."""
        ...

    async def save_device(self, device: Device) -> None:
        ...

    async def append_log(self, event: LogEvent) -> None:
        ...

    async def append_reading(self, reading: SensorReading) -> None:
        ...

    async def query_logs(self, device_id: str, limit: int) -> list[LogEvent]:
        ...

    async def query_readings(self, device_id: str, since: datetime) -> list[SensorReading]:
        ...


@runtime_checkable
class Observer(Protocol):
    """A real-time consumer of device updates (e.g. a dashboard connection)."""

    observer_id: str

    async def send(self, event: str, data: dict[str, Any]) -> None:
        ...

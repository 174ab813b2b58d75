from __future__ import annotations
import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from ..core.errors import PersistenceError, normalize_device_id
from ..core.timeutil import now_utc
from ..domain.interfaces import DeviceStore
from ..domain.models import LogEvent, SensorReading


class QueryService:
    """Read-only access to event logs and sensor history."""

    def __init__(
        self,
        store: DeviceStore,
        *,
        default_limit: int = 50,
        max_limit: int = 1000,
        default_hours: int = 24,
        max_hours: int = 24 * 30,
        store_timeout: float = 5.0,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._default_hours = default_hours
        self._max_hours = max_hours
        self._store_timeout = store_timeout
        self._clock = clock

    async def _bounded(self, op, what: str):
        try:
            return await asyncio.wait_for(op, timeout=self._store_timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(f"{what} timed out") from e

    async def recent_logs(self, device_id: str, limit: Optional[int] = None) -> list[LogEvent]:
        """Newest first. Missing or non-positive limits fall back to the default."""
        device_id = normalize_device_id(device_id)
        n = limit if limit and limit > 0 else self._default_limit
        n = min(n, self._max_limit)
        return await self._bounded(self._store.query_logs(device_id, n), "Log query")

    async def history(self, device_id: str, hours: Optional[int] = None) -> list[SensorReading]:
        """Readings from the last `hours` hours, oldest first."""
        device_id = normalize_device_id(device_id)
        h = hours if hours and hours > 0 else self._default_hours
        h = min(h, self._max_hours)
        since = self._clock() - timedelta(hours=h)
        return await self._bounded(self._store.query_readings(device_id, since), "History query")

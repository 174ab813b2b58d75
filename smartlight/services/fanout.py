from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..core.timeutil import to_iso
from ..domain.interfaces import Observer
from ..domain.models import ReconcileResult

logger = logging.getLogger(__name__)


@dataclass
class FanoutStats:
    deliveries: int = 0
    failures: int = 0


def build_update_payload(result: ReconcileResult, ts: datetime) -> dict[str, Any]:
    """One "latest state" message per reconciliation.

    The first classified event (if any) is merged in; further events of the
    same reconciliation only reach the log.
    """
    device = result.device
    payload: dict[str, Any] = {
        "deviceId": device.device_id,
        **device.state.to_wire(),
        "config": device.config.to_wire(),
        "timestamp": to_iso(ts),
    }
    if result.events:
        first = result.events[0]
        payload["event"] = first.type
        payload["message"] = first.message
    return payload


class NotificationFanout:
    """Registry of observers grouped by device id.

    An observer is in at most one group; subscribing again moves it.
    """

    def __init__(self, delivery_timeout: float = 2.0) -> None:
        self._delivery_timeout = delivery_timeout
        self._groups: dict[str, set[Observer]] = {}
        self._membership: dict[Observer, str] = {}
        self._lock = asyncio.Lock()
        self.stats = FanoutStats()

    async def subscribe(self, observer: Observer, device_id: str) -> None:
        async with self._lock:
            self._remove_locked(observer)
            self._groups.setdefault(device_id, set()).add(observer)
            self._membership[observer] = device_id
        logger.info("Observer %s subscribed to %s", observer.observer_id, device_id)

    async def unsubscribe(self, observer: Observer) -> Optional[str]:
        async with self._lock:
            device_id = self._remove_locked(observer)
        if device_id is not None:
            logger.info("Observer %s left %s", observer.observer_id, device_id)
        return device_id

    def _remove_locked(self, observer: Observer) -> Optional[str]:
        device_id = self._membership.pop(observer, None)
        if device_id is None:
            return None
        group = self._groups.get(device_id)
        if group is not None:
            group.discard(observer)
            if not group:
                del self._groups[device_id]
        return device_id

    async def observers_for(self, device_id: str) -> list[Observer]:
        async with self._lock:
            return list(self._groups.get(device_id, ()))

    async def subscription_count(self) -> int:
        async with self._lock:
            return len(self._membership)

    async def publish(self, device_id: str, payload: dict[str, Any]) -> int:
        """Deliver to every current member of the group. Never raises.

        Returns the number of successful deliveries.
        """
        targets = await self.observers_for(device_id)
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._deliver(o, payload) for o in targets),
            return_exceptions=True,
        )
        delivered = sum(1 for r in results if r is True)
        logger.debug("publish %s: %d/%d delivered", device_id, delivered, len(targets))
        return delivered

    async def _deliver(self, observer: Observer, payload: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(observer.send("update", payload), timeout=self._delivery_timeout)
        except Exception:
            self.stats.failures += 1
            logger.warning("Delivery to observer %s failed", observer.observer_id, exc_info=True)
            return False
        self.stats.deliveries += 1
        return True

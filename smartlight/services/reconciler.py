from __future__ import annotations
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, TypeVar

from ..core.config import Settings
from ..core.errors import PersistenceError, ValidationError, normalize_device_id
from ..core.timeutil import now_utc
from ..domain.interfaces import DeviceStore
from ..domain.models import (
    ConfigUpdate,
    Device,
    DeviceConfig,
    DeviceDefaults,
    DeviceState,
    Incoming,
    Intent,
    LogEvent,
    ManualToggle,
    ReconcileResult,
    SensorReading,
    TelemetryPush,
)
from ..domain.policy import evaluate, incoming_for_toggle, incoming_from_push
from .fanout import NotificationFanout, build_update_payload
from .locks import KeyedLock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EngineStats:
    reconciliations: int = 0
    persistence_failures: int = 0
    aux_write_failures: int = 0


def defaults_from_settings(cfg: Settings) -> DeviceDefaults:
    return DeviceDefaults(
        name=cfg.default_device_name,
        dark_threshold=cfg.default_dark_threshold,
        auto_off_delay=cfg.default_auto_off_delay,
        ldr_value=cfg.default_ldr_value,
        temperature=cfg.default_temperature,
        humidity=cfg.default_humidity,
    )


def _apply_incoming(state: DeviceState, incoming: Incoming, light_on: bool, ts: datetime) -> DeviceState:
    changes = {
        name: value
        for name, value in (
            ("ldr_value", incoming.ldr_value),
            ("temperature", incoming.temperature),
            ("humidity", incoming.humidity),
            ("motion_detected", incoming.motion_detected),
            ("uptime_seconds", incoming.uptime_seconds),
        )
        if value is not None
    }
    return replace(state, light_on=light_on, last_seen_at=ts, **changes)


def _apply_config(config: DeviceConfig, update: ConfigUpdate) -> DeviceConfig:
    changes = {}
    if update.dark_threshold is not None:
        if update.dark_threshold < 0:
            raise ValidationError("darkThreshold must be >= 0")
        changes["dark_threshold"] = update.dark_threshold
    if update.auto_off_delay is not None:
        if update.auto_off_delay < 0:
            raise ValidationError("autoOffDelay must be >= 0")
        changes["auto_off_delay"] = update.auto_off_delay
    return replace(config, **changes)


class ReconciliationEngine:
    """Merges intents into device state and hands the result to the fanout.

    Mutations of one device run one at a time (steps from load to the last
    log append happen under that device's lock). The caller gets its result
    once the device row is committed; publishing happens afterwards in a
    background task and cannot fail or delay the caller.
    """

    def __init__(
        self,
        store: DeviceStore,
        fanout: NotificationFanout,
        defaults: DeviceDefaults = DeviceDefaults(),
        *,
        store_timeout: float = 5.0,
        commit_grace: Optional[float] = None,
        offline_after: timedelta = timedelta(seconds=120),
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._fanout = fanout
        self._defaults = defaults
        self._store_timeout = store_timeout
        self._commit_grace = store_timeout if commit_grace is None else commit_grace
        self._offline_after = offline_after
        self._clock = clock

        self._locks = KeyedLock()
        self._pending: set[asyncio.Task] = set()
        self._last_publish: dict[str, asyncio.Task] = {}
        self.stats = EngineStats()

    # --- store access ---

    async def _required(self, op: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(op, timeout=self._store_timeout)
        except asyncio.TimeoutError as e:
            self.stats.persistence_failures += 1
            logger.error("%s timed out after %.1fs", what, self._store_timeout)
            raise PersistenceError(f"{what} timed out") from e
        except Exception as e:
            # Adapter detail goes to the log, callers get the short form
            self.stats.persistence_failures += 1
            logger.error("%s failed", what, exc_info=True)
            raise PersistenceError(f"{what} failed") from e

    async def _auxiliary(self, op: Awaitable[None], what: str) -> bool:
        # Best effort: a lost log/reading row never rolls back the committed
        # device state, but it is counted and logged.
        try:
            await asyncio.wait_for(op, timeout=self._store_timeout)
        except Exception:
            self.stats.aux_write_failures += 1
            logger.warning("%s failed (state already committed)", what, exc_info=True)
            return False
        return True

    async def _commit(self, device: Device, what: str) -> None:
        """Save the device row and report exactly what the store ended up with.

        The save is never cancelled at the first deadline: a commit already
        handed to the driver thread would land anyway. It gets a grace period;
        if it still has not settled it is cancelled (an open transaction rolls
        back when its connection closes) and the stored row decides the outcome.
        """
        task = asyncio.ensure_future(self._store.save_device(device))
        done, _ = await asyncio.wait({task}, timeout=self._store_timeout)
        if not done:
            logger.warning(
                "%s for %s still running after %.1fs, waiting up to %.1fs more",
                what, device.device_id, self._store_timeout, self._commit_grace,
            )
            done, _ = await asyncio.wait({task}, timeout=self._commit_grace)

        if done:
            exc = task.exception()
            if exc is None:
                return
            self.stats.persistence_failures += 1
            logger.error("%s failed", what, exc_info=exc)
            raise PersistenceError(f"{what} failed") from exc

        task.cancel()
        await asyncio.wait({task}, timeout=self._store_timeout + self._commit_grace)
        stored = await self._required(self._store.get_device(device.device_id), f"{what} check")
        if stored is not None and stored.state == device.state and stored.config == device.config:
            logger.warning("%s for %s timed out but the row is committed", what, device.device_id)
            return
        self.stats.persistence_failures += 1
        logger.error("%s for %s timed out, nothing committed", what, device.device_id)
        raise PersistenceError(f"{what} timed out")

    async def _load_or_create(self, device_id: str, now: datetime) -> tuple[Device, bool]:
        device = await self._required(self._store.get_device(device_id), "Device load")
        if device is not None:
            return device, False
        device = await self._required(
            self._store.create_device(self._defaults.new_device(device_id, now)),
            "Device create",
        )
        logger.info("Device %s registered with defaults", device_id)
        return device, True

    # --- public operations ---

    async def ensure_device(self, device_id: str) -> Device:
        """Get-or-create without changing state."""
        device_id = normalize_device_id(device_id)
        async with self._locks.hold(device_id):
            device, _ = await self._load_or_create(device_id, self._clock())
        return device

    async def reconcile(self, device_id: str, intent: Intent) -> ReconcileResult:
        device_id = normalize_device_id(device_id)
        async with self._locks.hold(device_id):
            result = await self._reconcile_locked(device_id, intent)
        self.stats.reconciliations += 1
        self._schedule_publish(result)
        return result

    async def _reconcile_locked(self, device_id: str, intent: Intent) -> ReconcileResult:
        now = self._clock()
        device, created = await self._load_or_create(device_id, now)

        if isinstance(intent, ConfigUpdate):
            return await self._reconcile_config(device, intent, created, now)

        if isinstance(intent, ManualToggle):
            incoming = incoming_for_toggle(device.state)
        elif isinstance(intent, TelemetryPush):
            incoming = incoming_from_push(intent)
        else:
            raise ValidationError(f"Unsupported intent: {type(intent).__name__}")

        outcome = evaluate(device.state, device.config, incoming)

        # lastSeenAt never moves backwards
        ts = max(now, device.state.last_seen_at)
        updated = replace(device, state=_apply_incoming(device.state, incoming, outcome.next_light_on, ts))
        await self._commit(updated, "Device save")

        events = [LogEvent(ts, device_id, e.type, e.message, e.payload) for e in outcome.events]

        if isinstance(intent, TelemetryPush):
            s = updated.state
            await self._auxiliary(
                self._store.append_reading(
                    SensorReading(
                        ts_utc=ts,
                        device_id=device_id,
                        ldr_value=s.ldr_value,
                        temperature=s.temperature,
                        humidity=s.humidity,
                        motion_detected=s.motion_detected,
                        light_on=s.light_on,
                        uptime_seconds=s.uptime_seconds,
                    )
                ),
                "Reading append",
            )
            if created or now - device.state.last_seen_at > self._offline_after:
                events.append(LogEvent(ts, device_id, "device_online", f"Device {device_id} online"))

        for ev in events:
            await self._auxiliary(self._store.append_log(ev), f"Log append ({ev.type})")

        logger.info(
            "reconciled %s: %s light=%s events=%s",
            device_id,
            type(intent).__name__,
            "ON" if updated.state.light_on else "OFF",
            [e.type for e in events] or "-",
        )
        return ReconcileResult(device=updated, events=tuple(events), created=created)

    async def _reconcile_config(
        self, device: Device, update: ConfigUpdate, created: bool, now: datetime
    ) -> ReconcileResult:
        old = device.config
        new = _apply_config(old, update)
        updated = replace(device, config=new)
        await self._commit(updated, "Config save")

        event = LogEvent(
            ts_utc=max(now, device.state.last_seen_at),
            device_id=device.device_id,
            type="config_change",
            message=f"Config updated: threshold={new.dark_threshold:g}, delay={new.auto_off_delay:g}",
            payload={"old": old.to_wire(), "new": new.to_wire()},
        )
        await self._auxiliary(self._store.append_log(event), "Log append (config_change)")
        logger.info("config %s: %s -> %s", device.device_id, old.to_wire(), new.to_wire())
        return ReconcileResult(device=updated, events=(event,), created=created)

    # --- fanout ---

    def _schedule_publish(self, result: ReconcileResult) -> None:
        # Publishes of one device go out in commit order: each waits for the
        # previous one of the same device.
        device_id = result.device.device_id
        payload = build_update_payload(result, self._clock())
        previous = self._last_publish.get(device_id)
        task = asyncio.create_task(
            self._publish_after(previous, device_id, payload),
            name=f"publish:{device_id}",
        )
        self._last_publish[device_id] = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(lambda t: self._forget_publish(device_id, t))

    async def _publish_after(self, previous: Optional[asyncio.Task], device_id: str, payload: dict) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        await self._fanout.publish(device_id, payload)

    def _forget_publish(self, device_id: str, task: asyncio.Task) -> None:
        if self._last_publish.get(device_id) is task:
            del self._last_publish[device_id]

    async def drain(self) -> None:
        """Wait for in-flight publishes (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def pending_publishes(self) -> int:
        return len(self._pending)

    def locked_devices(self) -> list[str]:
        return self._locks.active_keys()


def build_engine(
    store: DeviceStore,
    fanout: NotificationFanout,
    cfg: Settings,
    clock: Optional[Callable[[], datetime]] = None,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        store,
        fanout,
        defaults_from_settings(cfg),
        store_timeout=cfg.store_timeout_seconds,
        commit_grace=cfg.commit_grace_seconds,
        offline_after=timedelta(seconds=cfg.offline_after_seconds),
        clock=clock or now_utc,
    )

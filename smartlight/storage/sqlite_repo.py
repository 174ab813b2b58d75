from __future__ import annotations
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Optional

import aiosqlite

from ..core.errors import AuxiliaryWriteFailure, PersistenceError
from ..core.timeutil import parse_iso
from ..domain.models import Device, DeviceConfig, DeviceState, LogEvent, SensorReading


def _ts(dt: datetime) -> str:
    # Fixed-width UTC text so lexical order matches time order
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _config_doc(c: DeviceConfig) -> str:
    return json.dumps({"dark_threshold": c.dark_threshold, "auto_off_delay": c.auto_off_delay})


def _state_doc(s: DeviceState) -> str:
    return json.dumps({
        "light_on": s.light_on,
        "motion_detected": s.motion_detected,
        "ldr_value": s.ldr_value,
        "temperature": s.temperature,
        "humidity": s.humidity,
        "uptime_seconds": s.uptime_seconds,
        "last_seen_at": _ts(s.last_seen_at),
    })


def _device_from_row(row: Any) -> Device:
    device_id, name, config_doc, state_doc, created_at = row
    c = json.loads(config_doc)
    s = json.loads(state_doc)
    return Device(
        device_id=device_id,
        name=name,
        config=DeviceConfig(dark_threshold=c["dark_threshold"], auto_off_delay=c["auto_off_delay"]),
        state=DeviceState(
            light_on=bool(s["light_on"]),
            motion_detected=bool(s["motion_detected"]),
            ldr_value=s["ldr_value"],
            temperature=s["temperature"],
            humidity=s["humidity"],
            uptime_seconds=s["uptime_seconds"],
            last_seen_at=parse_iso(s["last_seen_at"]),
        ),
        created_at=parse_iso(created_at),
    )


class SQLiteRepository:
    """Device store on SQLite.

    The device row (state and config as JSON documents) is the atomicity
    boundary: every save is a single-row UPDATE. Log and reading rows are
    auxiliary and written separately.
    """

    def __init__(self, path: str, busy_timeout: float = 2.0) -> None:
        self._path = path
        self._busy_timeout = busy_timeout

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self._path, timeout=self._busy_timeout)

    async def init(self) -> None:
        try:
            async with self._connect() as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS devices (
                        device_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        config TEXT NOT NULL,
                        state TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        device_id TEXT NOT NULL,
                        ts_utc TEXT NOT NULL,
                        type TEXT NOT NULL,
                        message TEXT NOT NULL,
                        payload TEXT
                    )
                    """
                )
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS readings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        device_id TEXT NOT NULL,
                        ts_utc TEXT NOT NULL,
                        ldr_value REAL NOT NULL,
                        temperature REAL NOT NULL,
                        humidity REAL NOT NULL,
                        motion_detected INTEGER NOT NULL,
                        light_on INTEGER NOT NULL,
                        uptime_seconds REAL NOT NULL
                    )
                    """
                )
                await db.execute("CREATE INDEX IF NOT EXISTS idx_logs_device_ts ON logs(device_id, ts_utc)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_readings_device_ts ON readings(device_id, ts_utc)")
                await db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Store init failed: {e}") from e

    async def get_device(self, device_id: str) -> Optional[Device]:
        try:
            async with self._connect() as db:
                cur = await db.execute(
                    "SELECT device_id,name,config,state,created_at FROM devices WHERE device_id = ?",
                    (device_id,),
                )
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Device load failed: {e}") from e
        return _device_from_row(row) if row else None

    async def create_device(self, device: Device) -> Device:
        try:
            async with self._connect() as db:
                # Insert-if-absent: concurrent first contacts converge on one row
                await db.execute(
                    "INSERT OR IGNORE INTO devices(device_id,name,config,state,created_at) VALUES (?,?,?,?,?)",
                    (
                        device.device_id,
                        device.name,
                        _config_doc(device.config),
                        _state_doc(device.state),
                        _ts(device.created_at),
                    ),
                )
                await db.commit()
                cur = await db.execute(
                    "SELECT device_id,name,config,state,created_at FROM devices WHERE device_id = ?",
                    (device.device_id,),
                )
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Device create failed: {e}") from e
        if row is None:
            raise PersistenceError(f"Device {device.device_id} missing after create")
        return _device_from_row(row)

    async def save_device(self, device: Device) -> None:
        try:
            async with self._connect() as db:
                cur = await db.execute(
                    "UPDATE devices SET name = ?, config = ?, state = ? WHERE device_id = ?",
                    (device.name, _config_doc(device.config), _state_doc(device.state), device.device_id),
                )
                await db.commit()
                updated = cur.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"Device save failed: {e}") from e
        if updated != 1:
            raise PersistenceError(f"Device {device.device_id} not found on save")

    async def append_log(self, e: LogEvent) -> None:
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO logs(device_id,ts_utc,type,message,payload) VALUES (?,?,?,?,?)",
                    (
                        e.device_id,
                        _ts(e.ts_utc),
                        e.type,
                        e.message,
                        json.dumps(e.payload) if e.payload is not None else None,
                    ),
                )
                await db.commit()
        except sqlite3.Error as err:
            raise AuxiliaryWriteFailure(f"Log append failed: {err}") from err

    async def append_reading(self, r: SensorReading) -> None:
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO readings(device_id,ts_utc,ldr_value,temperature,humidity,motion_detected,light_on,uptime_seconds) "
                    "VALUES (?,?,?,?,?,?,?,?)",
                    (
                        r.device_id,
                        _ts(r.ts_utc),
                        float(r.ldr_value),
                        float(r.temperature),
                        float(r.humidity),
                        1 if r.motion_detected else 0,
                        1 if r.light_on else 0,
                        float(r.uptime_seconds),
                    ),
                )
                await db.commit()
        except sqlite3.Error as err:
            raise AuxiliaryWriteFailure(f"Reading append failed: {err}") from err

    async def query_logs(self, device_id: str, limit: int) -> List[LogEvent]:
        try:
            async with self._connect() as db:
                cur = await db.execute(
                    """
                    SELECT ts_utc,device_id,type,message,payload
                    FROM logs
                    WHERE device_id = ?
                    ORDER BY ts_utc DESC, id DESC
                    LIMIT ?
                    """,
                    (device_id, limit),
                )
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Log query failed: {e}") from e
        return [
            LogEvent(
                ts_utc=parse_iso(ts),
                device_id=did,
                type=typ,
                message=msg,
                payload=json.loads(payload) if payload else None,
            )
            for ts, did, typ, msg, payload in rows
        ]

    async def query_readings(self, device_id: str, since: datetime) -> List[SensorReading]:
        try:
            async with self._connect() as db:
                cur = await db.execute(
                    """
                    SELECT ts_utc,device_id,ldr_value,temperature,humidity,motion_detected,light_on,uptime_seconds
                    FROM readings
                    WHERE device_id = ? AND ts_utc >= ?
                    ORDER BY ts_utc ASC, id ASC
                    """,
                    (device_id, _ts(since)),
                )
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Reading query failed: {e}") from e
        out: list[SensorReading] = []
        for ts, did, ldr, temp, hum, motion, light, uptime in rows:
            out.append(
                SensorReading(
                    ts_utc=parse_iso(ts),
                    device_id=did,
                    ldr_value=ldr,
                    temperature=temp,
                    humidity=hum,
                    motion_detected=bool(motion),
                    light_on=bool(light),
                    uptime_seconds=uptime,
                )
            )
        return out

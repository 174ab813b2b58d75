from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ..core.timeutil import now_utc, to_iso
from ..domain.models import ManualToggle
from ..services.queries import QueryService
from ..services.reconciler import ReconciliationEngine
from .schemas import ConfigRequest, TelemetryRequest
from .security import verify_device_key

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters ---
# Placeholders; main.py points them at the real singletons via app.dependency_overrides.
def get_engine() -> ReconciliationEngine:  # overridden in main
    raise RuntimeError("Engine dependency not configured")

def get_queries() -> QueryService:  # overridden in main
    raise RuntimeError("Query dependency not configured")


@router.get("/status/{device_id}")
async def get_status(device_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    device = await engine.ensure_device(device_id)
    return {
        **device.state.to_wire(),
        "config": device.config.to_wire(),
        "deviceId": device.device_id,
        "name": device.name,
        "timestamp": to_iso(device.state.last_seen_at),
    }


@router.post("/sensor/{device_id}", dependencies=[Depends(verify_device_key)])
async def post_sensor_data(
    device_id: str,
    req: TelemetryRequest,
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.reconcile(device_id, req.to_intent())
    device = result.device
    # The controller adjusts itself from the returned config
    return {"status": "ok", "lightOn": device.state.light_on, "config": device.config.to_wire()}


@router.post("/toggle/{device_id}")
async def toggle_light(device_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    result = await engine.reconcile(device_id, ManualToggle())
    return {**result.device.state.to_wire(), "timestamp": to_iso(now_utc())}


@router.post("/config/{device_id}")
async def update_config(
    device_id: str,
    req: ConfigRequest,
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.reconcile(device_id, req.to_intent())
    return {"config": result.device.config.to_wire(), "message": "Config updated"}


@router.get("/logs/{device_id}")
async def get_logs(
    device_id: str,
    limit: Optional[int] = None,
    queries: QueryService = Depends(get_queries),
):
    logs = await queries.recent_logs(device_id, limit)
    return {"logs": [e.to_wire() for e in logs]}


@router.get("/history/{device_id}")
async def get_history(
    device_id: str,
    hours: Optional[int] = None,
    queries: QueryService = Depends(get_queries),
):
    readings = await queries.history(device_id, hours)
    return {"readings": [r.to_wire() for r in readings]}

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError, normalize_device_id
from ..services.fanout import NotificationFanout
from .schemas import SocketMessage

logger = logging.getLogger(__name__)

router = APIRouter()


def get_fanout() -> NotificationFanout:  # overridden in main
    raise RuntimeError("Fanout dependency not configured")


class WebSocketObserver:
    """Adapts one dashboard socket to the fanout Observer protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self.observer_id = uuid.uuid4().hex[:12]
        self._ws = websocket

    async def send(self, event: str, data: dict[str, Any]) -> None:
        await self._ws.send_json({"event": event, "data": data})


@router.websocket("/ws")
async def observer_socket(websocket: WebSocket, fanout: NotificationFanout = Depends(get_fanout)):
    await websocket.accept()
    observer = WebSocketObserver(websocket)
    logger.info("[WS] Client connected: %s", observer.observer_id)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                msg = SocketMessage.model_validate_json(text)
            except PydanticValidationError:
                await observer.send("error", {"message": "Expected {event, data}"})
                continue

            if msg.event == "subscribe":
                try:
                    device_id = normalize_device_id(str(msg.data.get("deviceId") or ""))
                except ValidationError as e:
                    await observer.send("error", {"message": e.message})
                    continue
                await fanout.subscribe(observer, device_id)
                await observer.send(
                    "subscribed",
                    {"deviceId": device_id, "message": f"Subscribed to {device_id}"},
                )
            elif msg.event == "unsubscribe":
                device_id = await fanout.unsubscribe(observer)
                await observer.send("unsubscribed", {"deviceId": device_id})
            else:
                await observer.send("error", {"message": f"Unknown event: {msg.event}"})
    except WebSocketDisconnect:
        logger.info("[WS] Client disconnected: %s", observer.observer_id)
    finally:
        await fanout.unsubscribe(observer)

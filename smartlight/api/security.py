from __future__ import annotations
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from ..core.config import Settings

logger = logging.getLogger(__name__)


def get_settings() -> Settings:  # overridden in main
    raise RuntimeError("Settings dependency not configured")


async def verify_device_key(
    device_id: str,
    x_device_key: Optional[str] = Header(default=None),
    cfg: Settings = Depends(get_settings),
) -> None:
    """Telemetry gate. Credential issuance and verification live elsewhere;
    this only checks that a key was presented by a known device."""
    if not cfg.require_device_key:
        return
    if not x_device_key:
        raise HTTPException(status_code=401, detail="No device key provided")
    if device_id.strip() not in cfg.allowed_device_ids():
        logger.warning("Rejected telemetry from unknown device %s", device_id)
        raise HTTPException(status_code=401, detail="Device not allowed")

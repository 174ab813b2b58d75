from __future__ import annotations
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional

from ..domain.models import ConfigUpdate, TelemetryPush


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TelemetryRequest(_CamelModel):
    # Type checks only: out-of-range readings are still recorded
    ldr_value: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    motion_detected: Optional[bool] = None
    light_on: Optional[bool] = None
    # older firmware sends "uptime"
    uptime_seconds: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("uptimeSeconds", "uptime", "uptime_seconds")
    )

    def to_intent(self) -> TelemetryPush:
        return TelemetryPush(
            ldr_value=self.ldr_value,
            temperature=self.temperature,
            humidity=self.humidity,
            motion_detected=self.motion_detected,
            light_on=self.light_on,
            uptime_seconds=self.uptime_seconds,
        )


class ConfigRequest(_CamelModel):
    dark_threshold: Optional[float] = Field(default=None, ge=0)
    auto_off_delay: Optional[float] = Field(default=None, ge=0)

    def to_intent(self) -> ConfigUpdate:
        return ConfigUpdate(dark_threshold=self.dark_threshold, auto_off_delay=self.auto_off_delay)


class SocketMessage(BaseModel):
    """Frame exchanged on the observer socket: {"event": ..., "data": {...}}."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)

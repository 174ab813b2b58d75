"""Automatic light policy and event classification.

Pure functions only: no clock reads, no I/O. Timestamps are assigned by
the caller when events are persisted.
"""

from __future__ import annotations

from typing import Optional

from .models import (
    ClassifiedEvent,
    DeviceConfig,
    DeviceState,
    Incoming,
    PolicyOutcome,
    TelemetryPush,
)


def incoming_from_push(push: TelemetryPush) -> Incoming:
    return Incoming(
        ldr_value=push.ldr_value,
        temperature=push.temperature,
        humidity=push.humidity,
        motion_detected=push.motion_detected,
        light_on=push.light_on,
        uptime_seconds=push.uptime_seconds,
    )


def incoming_for_toggle(state: DeviceState) -> Incoming:
    return Incoming(light_on=not state.light_on, manual=True)


def _fmt(v: Optional[float]) -> str:
    return "n/a" if v is None else f"{v:g}"


def _light_message(on: bool, automatic: bool, incoming: Incoming) -> str:
    word = "ON" if on else "OFF"
    if automatic:
        return f"Auto-{word}: LDR={_fmt(incoming.ldr_value)}, motion={incoming.motion_detected}"
    if incoming.manual:
        return f"Light toggled {word} via dashboard"
    return f"Light reported {word} by device"


def evaluate(state: DeviceState, config: DeviceConfig, incoming: Incoming) -> PolicyOutcome:
    # Automatic policy needs both readings in the same update; a lone
    # ldrValue or motionDetected leaves the light to the explicit flag.
    automatic = incoming.ldr_value is not None and incoming.motion_detected is not None

    if automatic:
        next_on = bool(incoming.motion_detected) and incoming.ldr_value < config.dark_threshold
    elif incoming.light_on is not None:
        next_on = bool(incoming.light_on)
    else:
        next_on = state.light_on

    events: list[ClassifiedEvent] = []
    payload = None
    if automatic:
        payload = {
            "ldrValue": incoming.ldr_value,
            "motionDetected": incoming.motion_detected,
            "darkThreshold": config.dark_threshold,
        }

    if next_on and not state.light_on:
        events.append(ClassifiedEvent("light_on", _light_message(True, automatic, incoming), payload))
    elif state.light_on and not next_on:
        kind = "auto_off" if automatic else "light_off"
        events.append(ClassifiedEvent(kind, _light_message(False, automatic, incoming), payload))

    if incoming.motion_detected is True:
        events.append(ClassifiedEvent("motion_detected", f"Motion at LDR={_fmt(incoming.ldr_value)}"))

    return PolicyOutcome(next_light_on=next_on, automatic=automatic, events=tuple(events))

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from smartlight.domain.models import DeviceConfig, DeviceState, Incoming, TelemetryPush
from smartlight.domain.policy import evaluate, incoming_for_toggle, incoming_from_push


def _state(light_on: bool = False) -> DeviceState:
    return DeviceState(
        light_on=light_on,
        motion_detected=False,
        ldr_value=512,
        temperature=25.0,
        humidity=60.0,
        uptime_seconds=0,
        last_seen_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


CONFIG = DeviceConfig(dark_threshold=400, auto_off_delay=60)


def _types(outcome) -> list[str]:
    return [e.type for e in outcome.events]


def test_dark_with_motion_turns_light_on_and_reports_motion() -> None:
    outcome = evaluate(_state(False), CONFIG, Incoming(ldr_value=300, motion_detected=True))

    assert outcome.next_light_on is True
    assert outcome.automatic is True
    assert _types(outcome) == ["light_on", "motion_detected"]
    assert outcome.events[0].message == "Auto-ON: LDR=300, motion=True"


def test_bright_without_motion_turns_light_off_automatically() -> None:
    outcome = evaluate(_state(True), CONFIG, Incoming(ldr_value=500, motion_detected=False))

    assert outcome.next_light_on is False
    assert _types(outcome) == ["auto_off"]


def test_automatic_policy_overrides_explicit_flag_in_same_push() -> None:
    outcome = evaluate(
        _state(False), CONFIG, Incoming(ldr_value=500, motion_detected=True, light_on=True)
    )

    assert outcome.next_light_on is False
    assert _types(outcome) == ["motion_detected"]


def test_threshold_is_strict() -> None:
    outcome = evaluate(_state(False), CONFIG, Incoming(ldr_value=400, motion_detected=True))

    assert outcome.next_light_on is False


@pytest.mark.parametrize(
    "incoming",
    [
        Incoming(ldr_value=100),
        Incoming(motion_detected=False),
    ],
)
def test_partial_sensor_update_skips_automatic_policy(incoming: Incoming) -> None:
    outcome = evaluate(_state(True), CONFIG, incoming)

    assert outcome.automatic is False
    assert outcome.next_light_on is True
    assert outcome.events == ()


def test_partial_update_falls_back_to_explicit_flag() -> None:
    outcome = evaluate(_state(True), CONFIG, Incoming(ldr_value=100, light_on=False))

    assert outcome.next_light_on is False
    assert _types(outcome) == ["light_off"]
    assert outcome.events[0].message == "Light reported OFF by device"


def test_lone_motion_still_yields_motion_event() -> None:
    outcome = evaluate(_state(False), CONFIG, Incoming(motion_detected=True))

    assert outcome.next_light_on is False
    assert _types(outcome) == ["motion_detected"]
    assert outcome.events[0].message == "Motion at LDR=n/a"


def test_manual_toggle_round_trip() -> None:
    on = _state(True)
    first = evaluate(on, CONFIG, incoming_for_toggle(on))
    assert first.next_light_on is False
    assert _types(first) == ["light_off"]
    assert first.events[0].message == "Light toggled OFF via dashboard"

    off = replace(on, light_on=first.next_light_on)
    second = evaluate(off, CONFIG, incoming_for_toggle(off))
    assert second.next_light_on is True
    assert _types(second) == ["light_on"]
    assert second.automatic is False


def test_heartbeat_without_change_has_no_events() -> None:
    outcome = evaluate(_state(False), CONFIG, Incoming(temperature=21.5, humidity=40.0))

    assert outcome.next_light_on is False
    assert outcome.events == ()


def test_repeated_bright_idle_pushes_never_switch() -> None:
    state = _state(False)
    for _ in range(5):
        outcome = evaluate(state, CONFIG, Incoming(ldr_value=800, motion_detected=False))
        assert outcome.next_light_on is False
        assert outcome.events == ()
        state = replace(state, light_on=outcome.next_light_on)


def test_evaluate_is_deterministic() -> None:
    incoming = Incoming(ldr_value=250, motion_detected=True, temperature=20.0)
    assert evaluate(_state(), CONFIG, incoming) == evaluate(_state(), CONFIG, incoming)


def test_automatic_events_carry_inputs() -> None:
    outcome = evaluate(_state(False), CONFIG, Incoming(ldr_value=120, motion_detected=True))

    assert outcome.events[0].payload == {"ldrValue": 120, "motionDetected": True, "darkThreshold": 400}
    assert outcome.events[1].payload is None


def test_incoming_from_push_copies_fields() -> None:
    push = TelemetryPush(ldr_value=1, temperature=2, humidity=3, motion_detected=True, light_on=False, uptime_seconds=9)
    incoming = incoming_from_push(push)

    assert incoming == Incoming(
        ldr_value=1, temperature=2, humidity=3, motion_detected=True, light_on=False, uptime_seconds=9
    )
    assert incoming.manual is False

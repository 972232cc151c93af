"""
Unit tests for bbalarms.domain.events.

These tests validate event-level contracts:
- events are immutable (frozen dataclasses)
- broadcast payload fields, including the "n/a" message placeholder
- OutputState serialisation
- status broadcast payload and testing flag
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from bbalarms.domain.events import (
    AlarmBroadcast,
    AlarmChangeEvent,
    AlarmTransition,
    OutputState,
    StatusBroadcast,
    TestStatusEvent,
)
from bbalarms.domain.models import AlarmState, AlarmTest


def _event(message=None) -> AlarmChangeEvent:
    return AlarmChangeEvent(
        alarm_id="bilge1",
        name="Bilge 1",
        state=AlarmState.DISABLED,
        previous_state=AlarmState.LOWERED,
        transition=AlarmTransition.DISABLED,
        timestamp=datetime(2026, 1, 1, 10, 0, 0),
        message=message,
        comment="Command sent from ops",
    )


def test_change_event_is_frozen() -> None:
    ev = _event()
    with pytest.raises(FrozenInstanceError):
        ev.state = AlarmState.LOWERED  # type: ignore[misc]


def test_test_status_event_defaults() -> None:
    ev = TestStatusEvent(AlarmTest.BUZZER, True)

    assert ev.alarm_id is None and ev.comment is None


def test_output_state_to_dict() -> None:
    assert OutputState(buzzer_on=True, master_on=True).to_dict() == {
        "buzzer_on": True,
        "buzzer_silenced": False,
        "pilot_on": False,
        "master_on": True,
    }


def test_broadcast_payload() -> None:
    payload = AlarmBroadcast(_event(), OutputState()).to_payload()

    assert payload == {
        "type": "alarm_alert",
        "alarm_id": "bilge1",
        "alarm_name": "Bilge 1",
        "alarm_state": "DISABLED",
        "previous_state": "LOWERED",
        "transition": "DISABLED",
        "alarm_message": "n/a",
        "alarm_code": 0,
        "testing": False,
        "timestamp": "2026-01-01T10:00:00",
        "buzzer_on": False,
        "buzzer_silenced": False,
        "pilot_on": False,
        "master_on": False,
    }
    assert AlarmBroadcast(_event("manual"), OutputState()).to_payload()["alarm_message"] == "manual"
    assert AlarmBroadcast(_event(), OutputState()).alarm_id == "bilge1"


def test_status_broadcast_payload() -> None:
    status = {"alarm_states": {"bilge1": "MINOR"}, "testing": True, "buzzer_on": True}
    broadcast = StatusBroadcast(status, datetime(2026, 1, 1, 10, 0, 0))

    assert broadcast.kind == "alarm_status"
    assert broadcast.alarm_id is None
    assert broadcast.testing is True
    assert broadcast.to_payload() == {
        "alarm_states": {"bilge1": "MINOR"},
        "testing": True,
        "buzzer_on": True,
        "type": "alarm_status",
        "timestamp": "2026-01-01T10:00:00",
    }
    assert StatusBroadcast({}, datetime(2026, 1, 1)).testing is False

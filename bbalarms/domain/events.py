"""
Alarm event domain models.

An `AlarmChangeEvent` represents *what happened* to one alarm at a specific
time, while `Alarm` (core/alarm/alarm.py) represents *what is currently true*.
An `AlarmBroadcast` is the outbound message built from a change event plus a
snapshot of the physical outputs.
A `StatusBroadcast` carries the full alarm and output status; it is sent on
every poll so listeners that missed a change catch up.

Events are typically used for:
- the persisted state-change log
- driving buzzer / pilot light / master outputs
- broadcasting to listeners (webhooks, peers)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from bbalarms.domain.models import AlarmTest, StateValue


class AlarmTransition(str, Enum):
    """
    Alarm lifecycle transition.

    Members
    -------
    RAISED : str
        Alarm entered a raised state.
    LOWERED : str
        Alarm returned to a quiescent state.
    DISABLED : str
        Alarm was disabled.
    UPDATED : str
        State is unchanged but the code changed (e.g. source went offline).
    """

    RAISED = "RAISED"
    LOWERED = "LOWERED"
    DISABLED = "DISABLED"
    UPDATED = "UPDATED"


@dataclass(frozen=True)
class AlarmChangeEvent:
    """
    Event fired by the manager after a mutation altered an alarm's state or code.

    Parameters
    ----------
    alarm_id
        Id of the alarm that changed.
    name
        Display name of the alarm.
    state
        New state.
    previous_state
        State before the mutation.
    transition
        Lifecycle transition classification.
    timestamp
        When the mutation was applied.
    message
        Message attached to the new state.
    code
        Code attached to the new state.
    testing
        True if the new state belongs to a test sequence.
    comment
        Optional audit comment (who/why), e.g. "Command sent from ops".
    """

    alarm_id: str
    name: Optional[str]
    state: StateValue
    previous_state: StateValue
    transition: AlarmTransition
    timestamp: datetime
    message: Optional[str] = None
    code: int = 0
    testing: bool = False
    comment: Optional[str] = None


@dataclass(frozen=True)
class TestStatusEvent:
    """
    Event fired when the manager's test slot starts or ends a test.

    Parameters
    ----------
    test
        Kind of test.
    active
        True when the test started, False when it ended.
    alarm_id
        Tested alarm for alarm tests, None for device tests.
    comment
        Why the test ended (timeout, operator, aborted by a real event).
    """

    __test__ = False

    test: AlarmTest
    active: bool
    alarm_id: Optional[str] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class OutputState:
    """
    Derived state of the physical outputs.

    Parameters
    ----------
    buzzer_on
        Buzzer is sounding.
    buzzer_silenced
        Buzzer is currently silenced.
    pilot_on
        Pilot light is lit.
    master_on
        Master interlock is engaged.
    """

    buzzer_on: bool = False
    buzzer_silenced: bool = False
    pilot_on: bool = False
    master_on: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "buzzer_on": self.buzzer_on,
            "buzzer_silenced": self.buzzer_silenced,
            "pilot_on": self.pilot_on,
            "master_on": self.master_on,
        }


@dataclass(frozen=True)
class AlarmBroadcast:
    """
    Outbound state-change message sent to subscribers.

    Parameters
    ----------
    event
        The change event being broadcast.
    outputs
        Output snapshot taken after the outputs reacted to the event.
    """

    event: AlarmChangeEvent
    outputs: OutputState

    kind = "alarm_alert"

    @property
    def alarm_id(self) -> Optional[str]:
        return self.event.alarm_id

    def to_payload(self) -> Dict[str, Any]:
        ev = self.event
        return {
            "type": "alarm_alert",
            "alarm_id": ev.alarm_id,
            "alarm_name": ev.name,
            "alarm_state": ev.state.value,
            "previous_state": ev.previous_state.value,
            "transition": ev.transition.value,
            "alarm_message": ev.message if ev.message is not None else "n/a",
            "alarm_code": ev.code,
            "testing": ev.testing,
            "timestamp": ev.timestamp.isoformat(timespec="seconds"),
            **self.outputs.to_dict(),
        }


@dataclass(frozen=True)
class StatusBroadcast:
    """
    Periodic status of every alarm and of the outputs.

    Parameters
    ----------
    status
        Status mapping as built by the service (``alarm_states``,
        ``alarm_codes``, testing flag, output positions).
    timestamp
        When the status was taken.
    """

    status: Dict[str, Any]
    timestamp: datetime

    kind = "alarm_status"
    alarm_id = None

    @property
    def testing(self) -> bool:
        return bool(self.status.get("testing", False))

    def to_payload(self) -> Dict[str, Any]:
        return {
            **self.status,
            "type": self.kind,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
        }


Broadcast = Union[AlarmBroadcast, StatusBroadcast]

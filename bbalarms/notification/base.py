"""
Notification contract.

An `AlarmNotification` is what the notification layer delivers: either one
alarm's state change (``alarm_alert``) or the periodic status of every alarm
(``alarm_status``). It keeps the alarm id, state, code and testing flag next
to the rendered payload so notifiers can route or filter without parsing it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from bbalarms.domain.events import AlarmBroadcast, StatusBroadcast
from bbalarms.domain.models import NO_CODE

KIND_ALERT = AlarmBroadcast.kind
KIND_STATUS = StatusBroadcast.kind


@dataclass(frozen=True)
class AlarmNotification:
    """
    One message for the notifiers.

    Parameters
    ----------
    kind
        ``alarm_alert`` or ``alarm_status``.
    payload
        JSON body to deliver.
    timestamp
        ISO timestamp (seconds) of the change or status.
    alarm_id
        Alarm that changed; None for status reports.
    state
        New alarm state name; None for status reports.
    code
        Alarm code of the change.
    testing
        True if the change belongs to a test, or a test is running.
    """

    kind: str
    payload: Dict[str, Any]
    timestamp: str
    alarm_id: Optional[str] = None
    state: Optional[str] = None
    code: int = NO_CODE
    testing: bool = False

    @property
    def is_status(self) -> bool:
        return self.kind == KIND_STATUS

    @property
    def label(self) -> str:
        """Short description for log lines."""
        return f"{self.kind} for {self.alarm_id or 'all alarms'}"

    @classmethod
    def for_alert(cls, broadcast: AlarmBroadcast, payload: Dict[str, Any]) -> "AlarmNotification":
        ev = broadcast.event
        return cls(
            kind=KIND_ALERT,
            payload=payload,
            timestamp=ev.timestamp.isoformat(timespec="seconds"),
            alarm_id=ev.alarm_id,
            state=ev.state.value,
            code=ev.code,
            testing=ev.testing,
        )

    @classmethod
    def for_status(cls, broadcast: StatusBroadcast, payload: Dict[str, Any]) -> "AlarmNotification":
        return cls(
            kind=KIND_STATUS,
            payload=payload,
            timestamp=broadcast.timestamp.isoformat(timespec="seconds"),
            testing=broadcast.testing,
        )


class Notifier(Protocol):
    """
    Anything with ``notify(notification)``; failures are raised, the worker retries.
    """

    def notify(self, notification: AlarmNotification) -> None:
        ...

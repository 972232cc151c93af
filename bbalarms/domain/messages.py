"""
Messages exchanged with peer services.

- `AlarmAlert`: a peer reports a state change of one of its alarms.
- `AlarmStatusReport`: a peer answers an ``alarm-status`` command with the
  state of all its alarms.
- `CommandMessage`: a command sent to a peer (or received from an operator).

States are carried as raw values; the receiving raiser interprets them with
its own severity scheme.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from bbalarms.domain.models import NO_CODE

COMMAND_LIST_ALARMS = "list-alarms"
COMMAND_ALARM_STATUS = "alarm-status"
COMMAND_SILENCE = "silence"
COMMAND_UNSILENCE = "unsilence"
COMMAND_DISABLE_ALARM = "disable-alarm"
COMMAND_ENABLE_ALARM = "enable-alarm"
COMMAND_TEST_ALARM = "test-alarm"
COMMAND_TEST_BUZZER = "test-buzzer"
COMMAND_TEST_PILOT_LIGHT = "test-pilot"
COMMAND_END_TEST = "end-test"
COMMAND_RAISE_ALARM = "raise-alarm"
COMMAND_LOWER_ALARM = "lower-alarm"
COMMAND_MASTER = "master"
COMMAND_HELP = "help"


@dataclass(frozen=True)
class AlarmAlert:
    """
    State change of one alarm reported by a peer.

    Parameters
    ----------
    source
        Name of the peer service that sent the alert.
    alarm_id
        Alarm id as known to both services.
    state
        Raw state value.
    message
        Alarm message, if any.
    code
        Alarm code.
    testing
        True if the peer is running a test.
    """

    source: str
    alarm_id: str
    state: Any
    message: Optional[str] = None
    code: int = NO_CODE
    testing: bool = False


@dataclass(frozen=True)
class AlarmStatusReport:
    """
    Bulk alarm status sent by a peer in answer to ``alarm-status``.
    """

    source: str
    states: Dict[str, Any] = field(default_factory=dict)
    messages: Dict[str, Optional[str]] = field(default_factory=dict)
    codes: Dict[str, int] = field(default_factory=dict)
    testing: bool = False

    def alerts(self) -> List[AlarmAlert]:
        """Split the report into one alert per alarm."""
        return [
            AlarmAlert(
                source=self.source,
                alarm_id=alarm_id,
                state=state,
                message=self.messages.get(alarm_id),
                code=int(self.codes.get(alarm_id, NO_CODE)),
                testing=self.testing,
            )
            for alarm_id, state in self.states.items()
        ]


@dataclass(frozen=True)
class CommandMessage:
    """
    A command addressed to an alarms service.
    """

    command: str
    args: List[Any] = field(default_factory=list)
    sender: Optional[str] = None
    target: Optional[str] = None


PeerMessage = Union[AlarmAlert, AlarmStatusReport, CommandMessage]

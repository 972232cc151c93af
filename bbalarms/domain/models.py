"""
Domain models and enums.

This module defines the core domain-level types used across the service:
- Alarm states for the graded (7 level) and binary deployments
- `SeverityScheme`, which gives a set of states its severity ordering
- Alarm codes used to annotate a state
- `AlarmDefinition`, the persisted description of one alarm
- Test kinds for the single test slot of the manager

Frozen dataclasses are used where appropriate so values can be shared across
threads without copying.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

NO_CODE: int = 0
CODE_SOURCE_OFFLINE: int = 1
CODE_SOURCE_ONLINE: int = 2


class AlarmState(str, Enum):
    """
    Graded alarm state, listed in ascending severity.

    Members
    -------
    DISABLED : str
        Alarm is intentionally ignored.
    DISCONNECTED : str
        No data available from the alarm source.
    LOWERED : str
        Nothing wrong.
    MINOR, MODERATE, SEVERE, CRITICAL : str
        Raised at increasing severity.
    """

    DISABLED = "DISABLED"
    DISCONNECTED = "DISCONNECTED"
    LOWERED = "LOWERED"
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"
    CRITICAL = "CRITICAL"


class BinaryAlarmState(str, Enum):
    """
    Alarm state for simple on/off deployments.
    """

    DISABLED = "DISABLED"
    OFF = "OFF"
    ON = "ON"


StateValue = Union[AlarmState, BinaryAlarmState]


@dataclass(frozen=True)
class SeverityScheme:
    """
    Severity ordering over a set of alarm states.

    The manager and the alarms never compare states directly; they ask the
    scheme. This keeps the state machine independent from the number of
    severity levels a deployment uses.

    Parameters
    ----------
    name
        Scheme name as used in configuration.
    disabled
        State meaning "intentionally ignored".
    quiescent
        Non-raising states ("nothing wrong" or "no data").
    raised
        Raising states in ascending severity.
    lowered
        State applied when an alarm is lowered.
    initial
        State of a freshly registered alarm.
    disconnected
        State applied when an alarm source goes offline.
    """

    name: str
    disabled: StateValue
    quiescent: Tuple[StateValue, ...]
    raised: Tuple[StateValue, ...]
    lowered: StateValue
    initial: StateValue
    disconnected: StateValue

    @property
    def states(self) -> Tuple[StateValue, ...]:
        """All states of the scheme, lowest first."""
        return (self.disabled,) + self.quiescent + self.raised

    @property
    def highest(self) -> StateValue:
        """The most severe raised state."""
        return self.raised[-1]

    def is_raised(self, state: StateValue) -> bool:
        return state in self.raised

    def is_quiescent(self, state: StateValue) -> bool:
        return state in self.quiescent

    def is_disabled(self, state: StateValue) -> bool:
        return state == self.disabled

    def severity(self, state: StateValue) -> int:
        """
        Return the position of `state` in the scheme (0 = disabled).

        Raises
        ------
        ValueError
            If the state does not belong to this scheme.
        """
        try:
            return self.states.index(state)
        except ValueError:
            raise ValueError(f"State {state!r} is not part of scheme {self.name}") from None

    def parse(self, value: object) -> StateValue:
        """
        Convert a state name, member value or integer index into a state.

        Integers index :attr:`states` (lowest first), matching the numeric
        encoding used by peers that send enum ordinals.

        Raises
        ------
        ValueError
            If the value does not name a state of this scheme.
        """
        for s in self.states:
            if value is s:
                return s
        if isinstance(value, bool):
            raise ValueError(f"Invalid alarm state: {value!r}")
        if isinstance(value, int):
            if 0 <= value < len(self.states):
                return self.states[value]
            raise ValueError(f"Invalid alarm state index: {value}")
        if isinstance(value, str):
            key = value.strip().upper()
            if key.isdigit():
                return self.parse(int(key))
            for s in self.states:
                if s.value == key:
                    return s
        raise ValueError(f"Invalid alarm state for scheme {self.name}: {value!r}")


SEVERITY_SCHEME = SeverityScheme(
    name="severity",
    disabled=AlarmState.DISABLED,
    quiescent=(AlarmState.DISCONNECTED, AlarmState.LOWERED),
    raised=(AlarmState.MINOR, AlarmState.MODERATE, AlarmState.SEVERE, AlarmState.CRITICAL),
    lowered=AlarmState.LOWERED,
    initial=AlarmState.LOWERED,
    disconnected=AlarmState.DISCONNECTED,
)

BINARY_SCHEME = SeverityScheme(
    name="binary",
    disabled=BinaryAlarmState.DISABLED,
    quiescent=(BinaryAlarmState.OFF,),
    raised=(BinaryAlarmState.ON,),
    lowered=BinaryAlarmState.OFF,
    initial=BinaryAlarmState.OFF,
    disconnected=BinaryAlarmState.OFF,
)

SCHEMES = {s.name: s for s in (SEVERITY_SCHEME, BINARY_SCHEME)}


def get_scheme(name: str) -> SeverityScheme:
    """
    Look up a severity scheme by its configuration name.

    Raises
    ------
    ValueError
        If no scheme has that name.
    """
    try:
        return SCHEMES[name]
    except KeyError:
        raise ValueError(f"Unknown severity scheme: {name!r}") from None


class AlarmTest(str, Enum):
    """
    Kind of test occupying the manager's single test slot.
    """

    NONE = "NONE"
    ALARM = "ALARM"
    BUZZER = "BUZZER"
    PILOT_LIGHT = "PILOT_LIGHT"


@dataclass(frozen=True)
class AlarmDefinition:
    """
    Persisted description of one alarm, loaded once at startup.

    Parameters
    ----------
    alarm_id
        Stable unique key.
    name
        Display label.
    source
        Name of the remote service relaying this alarm. ``None`` or an empty
        string marks a local alarm wired to a sensor switch.
    pin
        Input pin of a local alarm switch.
    noise_threshold
        Switch debounce tolerance handed to the sensor wiring.
    can_disable
        Whether operators may disable the alarm.
    enabled
        Definitions with ``enabled=False`` are not registered.
    """

    alarm_id: str
    name: str
    source: Optional[str] = None
    pin: int = 0
    noise_threshold: int = 0
    can_disable: bool = True
    enabled: bool = True

    @property
    def is_local(self) -> bool:
        return not self.source

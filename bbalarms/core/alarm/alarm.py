"""
Alarm entity.

One `Alarm` holds the current state of a single named alarm together with its
message, code and "last raised / lowered / disabled" timestamps. The entity
owns the transition rules; the manager owns locking and event fan-out.

Transition rules
----------------
- Entering DISABLED requires ``can_disable``.
- While DISABLED only a quiescent state is accepted (this clears the disable).
- A raised state is only entered from a quiescent state. Re-applying the
  current raised state is accepted as a no-op, any other raised state while
  raised is rejected: escalation requires an explicit lower first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from bbalarms.domain.errors import InvalidAlarmArgumentError, InvalidAlarmTransitionError
from bbalarms.domain.models import NO_CODE, SEVERITY_SCHEME, SeverityScheme, StateValue

if TYPE_CHECKING:
    from bbalarms.core.alarm.raiser_base import AlarmRaiser


@dataclass(frozen=True)
class AlarmSnapshot:
    """
    Immutable copy of an alarm's observable fields, safe to hand to other threads.
    """

    id: str
    name: Optional[str]
    state: StateValue
    message: Optional[str]
    code: int
    can_disable: bool
    testing: bool
    last_raised: Optional[datetime]
    last_lowered: Optional[datetime]
    last_disabled: Optional[datetime]

    def to_dict(self) -> dict:
        def _iso(ts: Optional[datetime]) -> Optional[str]:
            return ts.isoformat(timespec="seconds") if ts else None

        return {
            "alarm_id": self.id,
            "alarm_name": self.name,
            "alarm_state": self.state.value,
            "alarm_message": self.message,
            "alarm_code": self.code,
            "can_disable": self.can_disable,
            "testing": self.testing,
            "last_raised": _iso(self.last_raised),
            "last_lowered": _iso(self.last_lowered),
            "last_disabled": _iso(self.last_disabled),
        }


@dataclass(eq=False)
class Alarm:
    """
    State of one named alarm.

    Not thread-safe on its own; every mutation goes through
    :class:`~bbalarms.core.alarm.alarm_manager.AlarmManager`, which serialises
    access with its lock.

    Parameters
    ----------
    id
        Stable unique key, immutable after creation.
    name
        Display label.
    raiser
        Raiser responsible for this alarm.
    can_disable
        Whether the alarm accepts being disabled.
    scheme
        Severity ordering the alarm's states belong to.
    clock
        Source of "now" for the timestamp buckets.
    """

    id: str
    name: Optional[str] = None
    raiser: Optional["AlarmRaiser"] = field(default=None, repr=False, compare=False)
    can_disable: bool = True
    scheme: SeverityScheme = field(default=SEVERITY_SCHEME, repr=False)
    clock: Callable[[], datetime] = field(default=datetime.now, repr=False, compare=False)

    state: StateValue = field(init=False)
    message: Optional[str] = field(default=None, init=False)
    code: int = field(default=NO_CODE, init=False)
    testing: bool = field(default=False, init=False)
    last_raised: Optional[datetime] = field(default=None, init=False)
    last_lowered: Optional[datetime] = field(default=None, init=False)
    last_disabled: Optional[datetime] = field(default=None, init=False)

    _prev_state: StateValue = field(init=False, repr=False)
    _prev_code: int = field(default=NO_CODE, init=False, repr=False)

    def __post_init__(self) -> None:
        self.state = self.scheme.initial
        self._prev_state = self.state

    def __setattr__(self, key, value) -> None:
        if key == "id" and "id" in self.__dict__:
            raise AttributeError("Alarm id is immutable")
        super().__setattr__(key, value)

    # --- Queries ---
    @property
    def is_raised(self) -> bool:
        return self.scheme.is_raised(self.state)

    @property
    def is_lowered(self) -> bool:
        return self.scheme.is_quiescent(self.state)

    @property
    def is_disabled(self) -> bool:
        return self.scheme.is_disabled(self.state)

    @property
    def previous_state(self) -> StateValue:
        return self._prev_state

    @property
    def has_changed_state(self) -> bool:
        return self._prev_state != self.state

    @property
    def has_changed(self) -> bool:
        """
        True if the last update changed the state or the code.
        """
        return self._prev_state != self.state or self._prev_code != self.code

    def snapshot(self) -> AlarmSnapshot:
        return AlarmSnapshot(
            id=self.id,
            name=self.name,
            state=self.state,
            message=self.message,
            code=self.code,
            can_disable=self.can_disable,
            testing=self.testing,
            last_raised=self.last_raised,
            last_lowered=self.last_lowered,
            last_disabled=self.last_disabled,
        )

    # --- Transitions ---
    def validate(self, state: StateValue) -> None:
        """
        Check that moving from the current state to `state` is allowed.

        Raises
        ------
        InvalidAlarmArgumentError
            If `state` is not part of this alarm's severity scheme.
        InvalidAlarmTransitionError
            If the transition breaks one of the transition rules.
        """
        scheme = self.scheme
        state = self._coerce(state)

        if scheme.is_disabled(state):
            if not self.can_disable:
                raise InvalidAlarmTransitionError(f"Alarm {self.id} cannot be disabled")
            return

        if self.is_disabled:
            if not scheme.is_quiescent(state):
                raise InvalidAlarmTransitionError(
                    f"Alarm {self.id} is disabled and cannot change to {state.value}"
                )
            return

        if scheme.is_raised(state) and self.is_raised and state != self.state:
            raise InvalidAlarmTransitionError(
                f"Alarm {self.id} is already raised at {self.state.value}; lower it before raising to {state.value}"
            )

    def update(self, state: StateValue, message: Optional[str] = None, code: int = NO_CODE) -> bool:
        """
        Apply a validated transition.

        The message is always stored. The relevant "last-*" timestamp is
        refreshed when the state actually changes.

        Returns
        -------
        bool
            True if the state or the code differs from before.
        """
        state = self._coerce(state)
        self.validate(state)

        self._prev_state = self.state
        self._prev_code = self.code
        self.state = state
        self.message = message
        self.code = code

        if self.has_changed_state:
            now = self.clock()
            if self.scheme.is_raised(state):
                self.last_raised = now
            elif self.scheme.is_quiescent(state):
                self.last_lowered = now
            else:
                self.last_disabled = now

        return self.has_changed

    def raise_alarm(self, state: StateValue, message: Optional[str] = None, code: int = NO_CODE) -> bool:
        """
        Move to a raised state.

        Raises
        ------
        InvalidAlarmArgumentError
            If `state` is quiescent or disabled.
        """
        state = self._coerce(state)
        if not self.scheme.is_raised(state):
            raise InvalidAlarmArgumentError(f"Alarm state {state.value} is not valid for raising an alarm")
        return self.update(state, message, code)

    def lower(self, message: Optional[str] = None, code: int = NO_CODE) -> bool:
        return self.update(self.scheme.lowered, message, code)

    def enable(self, enable: bool = True) -> bool:
        """
        Enable or disable the alarm.

        No-op (returns False) if the alarm is already in the requested
        disable state.
        """
        if enable:
            if not self.is_disabled:
                self._mark_unchanged()
                return False
            return self.update(self.scheme.lowered, None, NO_CODE)

        if self.is_disabled:
            self._mark_unchanged()
            return False
        return self.update(self.scheme.disabled, None, NO_CODE)

    def disable(self) -> bool:
        return self.enable(False)

    def start_test(self, state: StateValue, message: Optional[str] = None, code: int = NO_CODE) -> bool:
        self.testing = True
        try:
            return self.raise_alarm(state, message, code)
        except Exception:
            self.testing = False
            raise

    def end_test(self, message: Optional[str] = None, code: int = NO_CODE) -> bool:
        try:
            return self.lower(message, code)
        finally:
            self.testing = False

    def _coerce(self, state: object) -> StateValue:
        try:
            return self.scheme.parse(state)
        except ValueError as e:
            raise InvalidAlarmArgumentError(f"Alarm {self.id}: {e}") from None

    def _mark_unchanged(self) -> None:
        self._prev_state = self.state
        self._prev_code = self.code

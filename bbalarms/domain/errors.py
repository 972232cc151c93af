"""
Typed error conditions raised by the alarm engine.

Operator-facing layers render a specific message per class, so every failing
caller-facing operation raises one of these instead of a generic exception.
"""

from __future__ import annotations


class AlarmError(Exception):
    """Base class for all alarm engine errors."""


class AlarmNotFoundError(AlarmError, KeyError):
    """An unknown alarm id was referenced."""

    def __init__(self, alarm_id: str):
        super().__init__(f"Alarm {alarm_id} not found")
        self.alarm_id = alarm_id

    def __str__(self) -> str:
        return str(self.args[0])


class DuplicateAlarmError(AlarmError):
    """An alarm id was registered twice."""


class InvalidAlarmArgumentError(AlarmError, ValueError):
    """A state value is not valid for the requested operation."""


class InvalidAlarmTransitionError(AlarmError):
    """The requested state transition is not allowed from the current state."""


class AlarmTestError(InvalidAlarmTransitionError):
    """A test cannot be started (or ended) in the current situation."""


class UnknownCommandError(AlarmError):
    """An operator command is not recognised."""

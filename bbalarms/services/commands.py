"""
Operator commands.

:class:`AlarmCommands` turns a command name plus positional arguments into a
call on the manager or the output coordinator, and every outcome into a
:class:`CommandResponse`. Alarm engine errors become ``ok=False`` responses
carrying the error class name; anything else propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.core.outputs.output_coordinator import OutputCoordinator
from bbalarms.domain import messages as m
from bbalarms.domain.errors import (
    AlarmError,
    InvalidAlarmArgumentError,
    InvalidAlarmTransitionError,
    UnknownCommandError,
)
from bbalarms.domain.models import AlarmTest
from bbalarms.services.alarms_service import AlarmsService

logger = logging.getLogger(__name__)

HELP = {
    m.COMMAND_LIST_ALARMS: "List all alarms",
    m.COMMAND_ALARM_STATUS: "Alarm status: alarm-status [id] (all alarms and the outputs without an id)",
    m.COMMAND_SILENCE: "Silence the buzzer: silence [secs]",
    m.COMMAND_UNSILENCE: "End the buzzer silence",
    m.COMMAND_DISABLE_ALARM: "Disable an alarm: disable-alarm <id>",
    m.COMMAND_ENABLE_ALARM: "Enable an alarm: enable-alarm <id>",
    m.COMMAND_TEST_ALARM: "Test an alarm: test-alarm <id> [state] [secs]",
    m.COMMAND_TEST_BUZZER: "Test the buzzer: test-buzzer [secs]",
    m.COMMAND_TEST_PILOT_LIGHT: "Test the pilot light: test-pilot [secs]",
    m.COMMAND_END_TEST: "End the running test",
    m.COMMAND_RAISE_ALARM: "Raise an alarm: raise-alarm <id> <state> [message]",
    m.COMMAND_LOWER_ALARM: "Lower an alarm: lower-alarm <id> [message]",
    m.COMMAND_MASTER: "Switch the master output: master on|off",
    m.COMMAND_HELP: "This help",
}


@dataclass(frozen=True)
class CommandResponse:
    """
    Outcome of one operator command.

    Parameters
    ----------
    ok
        True if the command was applied.
    command
        Command name as received.
    message
        Human-readable outcome.
    error
        Error class name when ``ok`` is False.
    data
        Command-specific result (e.g. alarm list).
    """

    ok: bool
    command: str
    message: str = ""
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok, "command": self.command, "message": self.message}
        if self.error:
            out["error"] = self.error
        if self.data:
            out["data"] = self.data
        return out


class AlarmCommands:
    """
    Command dispatcher for operators and peers.

    Parameters
    ----------
    service
        Wired alarms service (manager + coordinator).
    default_silence_s
        Silence period when ``silence`` has no argument.
    default_test_s
        Test length when a test command has no duration argument.
    """

    def __init__(self, service: AlarmsService, default_silence_s: float = 300.0, default_test_s: float = 5.0):
        self._service = service
        self._default_silence_s = default_silence_s
        self._default_test_s = default_test_s
        self._handlers: Dict[str, Callable[[Sequence[Any], str], CommandResponse]] = {
            m.COMMAND_LIST_ALARMS: self._list_alarms,
            m.COMMAND_ALARM_STATUS: self._alarm_status,
            m.COMMAND_SILENCE: self._silence,
            m.COMMAND_UNSILENCE: self._unsilence,
            m.COMMAND_DISABLE_ALARM: self._disable_alarm,
            m.COMMAND_ENABLE_ALARM: self._enable_alarm,
            m.COMMAND_TEST_ALARM: self._test_alarm,
            m.COMMAND_TEST_BUZZER: self._test_buzzer,
            m.COMMAND_TEST_PILOT_LIGHT: self._test_pilot,
            m.COMMAND_END_TEST: self._end_test,
            m.COMMAND_RAISE_ALARM: self._raise_alarm,
            m.COMMAND_LOWER_ALARM: self._lower_alarm,
            m.COMMAND_MASTER: self._master,
            m.COMMAND_HELP: self._help,
        }

    @property
    def manager(self) -> AlarmManager:
        return self._service.manager

    @property
    def coordinator(self) -> OutputCoordinator:
        return self._service.coordinator

    @property
    def commands(self) -> Sequence[str]:
        return list(self._handlers)

    def handle(self, command: str, args: Optional[Sequence[Any]] = None, sender: Optional[str] = None) -> CommandResponse:
        """
        Run one command.

        Parameters
        ----------
        command
            Command name (case-insensitive).
        args
            Positional arguments.
        sender
            Who sent the command; recorded in audit comments.

        Returns
        -------
        CommandResponse
            ``ok=False`` with the error class name if the engine rejected it.
        """
        name = (command or "").strip().lower()
        args = list(args or [])
        who = sender or "unknown"
        try:
            handler = self._handlers.get(name)
            if handler is None:
                raise UnknownCommandError(f"Unrecognised command: {command}")
            response = handler(args, who)
        except AlarmError as e:
            logger.warning("Command %s %s from %s failed: %s", name, args, who, e)
            return CommandResponse(ok=False, command=name, message=str(e), error=type(e).__name__)

        logger.info("Command %s %s from %s: %s", name, args, who, response.message)
        return response

    # --- Argument helpers ---
    @staticmethod
    def _arg(args: Sequence[Any], i: int, what: str) -> str:
        if len(args) <= i or args[i] is None or str(args[i]).strip() == "":
            raise InvalidAlarmArgumentError(f"Please specify {what}")
        return str(args[i]).strip()

    @staticmethod
    def _seconds(args: Sequence[Any], i: int, default: float) -> float:
        if len(args) <= i or args[i] is None:
            return default
        try:
            secs = float(args[i])
        except (TypeError, ValueError):
            raise InvalidAlarmArgumentError(f"Invalid number of seconds: {args[i]!r}") from None
        if secs <= 0:
            raise InvalidAlarmArgumentError("Number of seconds must be positive")
        return secs

    # --- Handlers ---
    def _list_alarms(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarms = [s.to_dict() for s in self.manager.snapshots()]
        return CommandResponse(True, m.COMMAND_LIST_ALARMS, f"{len(alarms)} alarms", data={"alarms": alarms})

    def _alarm_status(self, args: Sequence[Any], who: str) -> CommandResponse:
        if args and args[0] is not None and str(args[0]).strip():
            alarm = self.manager.get_alarm(str(args[0]).strip(), throw_if_missing=True)
            return CommandResponse(
                True, m.COMMAND_ALARM_STATUS, f"Status of {alarm.id}", data=alarm.snapshot().to_dict()
            )
        return CommandResponse(True, m.COMMAND_ALARM_STATUS, "Alarm status", data=self._service.status())

    def _silence(self, args: Sequence[Any], who: str) -> CommandResponse:
        secs = self._seconds(args, 0, self._default_silence_s)
        if not self.coordinator.silence(secs):
            raise InvalidAlarmTransitionError("Cannot silence buzzer: no alarm is raised or it is already silenced")
        return CommandResponse(True, m.COMMAND_SILENCE, f"Buzzer silenced for {secs:g} secs")

    def _unsilence(self, args: Sequence[Any], who: str) -> CommandResponse:
        was = self.coordinator.unsilence()
        return CommandResponse(True, m.COMMAND_UNSILENCE, "Buzzer unsilenced" if was else "Buzzer was not silenced")

    def _disable_alarm(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarm_id = self._arg(args, 0, "an alarm id")
        self.manager.disable_alarm(alarm_id, comment=f"Command sent from {who}")
        return CommandResponse(True, m.COMMAND_DISABLE_ALARM, f"Alarm {alarm_id} disabled")

    def _enable_alarm(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarm_id = self._arg(args, 0, "an alarm id")
        self.manager.enable_alarm(alarm_id, comment=f"Command sent from {who}")
        # the raiser re-reports the live state once the alarm accepts input again
        self.manager.request_update_alarms(alarm_id)
        return CommandResponse(True, m.COMMAND_ENABLE_ALARM, f"Alarm {alarm_id} enabled")

    def _test_alarm(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarm_id = self._arg(args, 0, "an alarm id")
        state = args[1] if len(args) > 1 and args[1] not in (None, "") else None
        secs = self._seconds(args, 2, self._default_test_s)
        alarm = self.manager.start_test(alarm_id, state, duration_s=secs, comment=f"Test started by {who}")
        return CommandResponse(
            True, m.COMMAND_TEST_ALARM, f"Testing alarm {alarm_id} at {alarm.state.value} for {secs:g} secs"
        )

    def _test_buzzer(self, args: Sequence[Any], who: str) -> CommandResponse:
        secs = self._seconds(args, 0, self._default_test_s)
        self.manager.start_device_test(AlarmTest.BUZZER, secs)
        return CommandResponse(True, m.COMMAND_TEST_BUZZER, f"Testing buzzer for {secs:g} secs")

    def _test_pilot(self, args: Sequence[Any], who: str) -> CommandResponse:
        secs = self._seconds(args, 0, self._default_test_s)
        self.manager.start_device_test(AlarmTest.PILOT_LIGHT, secs)
        return CommandResponse(True, m.COMMAND_TEST_PILOT_LIGHT, f"Testing pilot light for {secs:g} secs")

    def _end_test(self, args: Sequence[Any], who: str) -> CommandResponse:
        ended = self.manager.end_test(comment=f"Test ended by {who}")
        if ended == AlarmTest.NONE:
            return CommandResponse(True, m.COMMAND_END_TEST, "No test running")
        return CommandResponse(True, m.COMMAND_END_TEST, f"Ended {ended.value} test")

    def _raise_alarm(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarm_id = self._arg(args, 0, "an alarm id")
        state = self._arg(args, 1, "a state")
        message = str(args[2]) if len(args) > 2 and args[2] is not None else None
        alarm = self.manager.raise_alarm(alarm_id, state, message, comment=f"Command sent from {who}")
        return CommandResponse(True, m.COMMAND_RAISE_ALARM, f"Alarm {alarm_id} is {alarm.state.value}")

    def _lower_alarm(self, args: Sequence[Any], who: str) -> CommandResponse:
        alarm_id = self._arg(args, 0, "an alarm id")
        message = str(args[1]) if len(args) > 1 and args[1] is not None else None
        alarm = self.manager.lower_alarm(alarm_id, message, comment=f"Command sent from {who}")
        return CommandResponse(True, m.COMMAND_LOWER_ALARM, f"Alarm {alarm_id} is {alarm.state.value}")

    def _master(self, args: Sequence[Any], who: str) -> CommandResponse:
        value = self._arg(args, 0, "on or off").lower()
        if value not in ("on", "off"):
            raise InvalidAlarmArgumentError(f"Master must be on or off, not {value}")
        if not self.coordinator.set_master(value == "on"):
            raise InvalidAlarmTransitionError("Cannot switch master while an alarm is raised")
        return CommandResponse(True, m.COMMAND_MASTER, f"Master turned {value}")

    def _help(self, args: Sequence[Any], who: str) -> CommandResponse:
        return CommandResponse(True, m.COMMAND_HELP, "Available commands", data={"commands": dict(HELP)})

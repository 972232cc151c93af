"""
Concrete alarm raisers.

- :class:`LocalAlarmRaiser` follows one sensor switch wired to an input pin.
  Switch on raises the alarm, switch off lowers it.
- :class:`RemoteAlarmRaiser` relays the alarms of a peer service. It decodes
  nothing itself: the peer link hands it :class:`~bbalarms.domain.messages.AlarmAlert`
  and :class:`~bbalarms.domain.messages.AlarmStatusReport` objects and tells it
  when the peer goes offline or comes back.

Both raisers ignore input for alarms an operator disabled; the alarm stays
DISABLED until it is enabled again.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.domain.errors import AlarmError, InvalidAlarmArgumentError
from bbalarms.domain.messages import (
    COMMAND_ALARM_STATUS,
    AlarmAlert,
    AlarmStatusReport,
    CommandMessage,
    PeerMessage,
)
from bbalarms.domain.models import (
    CODE_SOURCE_OFFLINE,
    CODE_SOURCE_ONLINE,
    NO_CODE,
    AlarmDefinition,
    StateValue,
)

logger = logging.getLogger(__name__)


class SwitchSensor(Protocol):
    """
    Protocol interface for a two-position input (an alarm switch on a pin).
    """

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        ...

    def request_status(self) -> None:
        ...


@dataclass
class MemorySwitchSensor:
    """
    In-memory switch input.

    Used when no board is attached, by the development entrypoint and in
    tests. :meth:`set` plays the role of the pin changing level.

    Parameters
    ----------
    pin
        Input pin number.
    noise_threshold
        Debounce tolerance (kept for wiring parity, not used in memory).
    """

    pin: int
    noise_threshold: int = 0
    _on: Optional[bool] = field(default=None, init=False)
    _listeners: List[Callable[[bool], None]] = field(default_factory=list, init=False, repr=False)

    @property
    def is_on(self) -> bool:
        return bool(self._on)

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        self._listeners.append(callback)

    def set(self, on: bool) -> None:
        if self._on == on:
            return
        self._on = on
        self._notify(on)

    def request_status(self) -> None:
        """Re-announce the current position, if one is known."""
        if self._on is not None:
            self._notify(self._on)

    def _notify(self, on: bool) -> None:
        for cb in list(self._listeners):
            cb(on)


class LocalAlarmRaiser:
    """
    Raiser for one alarm driven by a local sensor switch.

    Parameters
    ----------
    definition
        Alarm definition; must be local with a non-zero pin.
    sensor
        Switch input that reports on/off.
    raised_state
        State used when the switch turns on. Defaults to the scheme's most
        severe state.
    clock
        Source of "now" for the alarm message.

    Raises
    ------
    InvalidAlarmArgumentError
        If the definition is not local or has pin 0.
    """

    def __init__(
        self,
        definition: AlarmDefinition,
        sensor: SwitchSensor,
        raised_state: Optional[StateValue] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not definition.is_local:
            raise InvalidAlarmArgumentError(f"Alarm {definition.alarm_id} is not a local alarm")
        if definition.pin == 0:
            raise InvalidAlarmArgumentError(f"Cannot have alarm {definition.alarm_id} on pin 0")
        self.definition = definition
        self.sensor = sensor
        self._raised_state = raised_state
        self._clock = clock
        self._manager: Optional[AlarmManager] = None

    @property
    def alarm_id(self) -> str:
        return self.definition.alarm_id

    def register_alarms(self, manager: AlarmManager) -> None:
        self._manager = manager
        d = self.definition
        manager.register_alarm(self, d.alarm_id, d.name, d.can_disable)
        self.sensor.add_listener(self.on_switched)
        logger.info("Created local alarm %s (%s) on pin %s", d.alarm_id, d.name, d.pin)

    def request_update_alarms(self) -> None:
        self.sensor.request_status()

    def on_switched(self, on: bool) -> None:
        """
        Switch callback: raise on ON, lower on OFF.
        """
        manager = self._manager
        if manager is None:
            return
        alarm_id = self.alarm_id
        try:
            if manager.is_alarm_disabled(alarm_id):
                logger.debug("Ignoring switch on disabled alarm %s", alarm_id)
                return
            message = f"Alarm {alarm_id} {'on' if on else 'off'} @ {self._clock():%Y-%m-%d %H:%M:%S}"
            if on:
                state = self._raised_state or manager.scheme.highest
                manager.raise_alarm(alarm_id, state, message)
            else:
                manager.lower_alarm(alarm_id, message)
        except AlarmError as e:
            logger.warning("Local alarm %s switch %s rejected: %s", alarm_id, "on" if on else "off", e)


class RemoteAlarmRaiser:
    """
    Raiser for the alarms of one peer service.

    The raiser keeps the last state reported by the peer for every alarm and
    pushes it into the manager unless the alarm is disabled locally.

    Escalation
    ----------
    The manager rejects a different raised severity while an alarm is raised.
    The peer is authoritative about its own alarms, so a severity change while
    raised is applied as lower followed by raise.

    Parameters
    ----------
    source
        Peer service name.
    definitions
        Definitions of the alarms this peer relays.
    send_command
        Callable used to send commands to the peer (``None`` until a link is attached).
    sender
        Name stamped on outgoing commands.
    """

    def __init__(
        self,
        source: str,
        definitions: Sequence[AlarmDefinition],
        send_command: Optional[Callable[[CommandMessage], None]] = None,
        sender: Optional[str] = None,
    ):
        if not source:
            raise InvalidAlarmArgumentError("A remote raiser needs a source")
        self.source = source
        self.definitions = [d for d in definitions if d.source == source]
        self.send_command = send_command
        self.sender = sender
        self._manager: Optional[AlarmManager] = None
        self._lock = threading.Lock()
        self._reported: Dict[str, Tuple[object, Optional[str], int]] = {}
        self._online: Optional[bool] = None

    @property
    def alarm_ids(self) -> List[str]:
        return [d.alarm_id for d in self.definitions]

    @property
    def is_online(self) -> bool:
        with self._lock:
            return bool(self._online)

    def reported_state(self, alarm_id: str) -> Optional[Tuple[object, Optional[str], int]]:
        """Last (state, message, code) reported by the peer for `alarm_id`."""
        with self._lock:
            return self._reported.get(alarm_id)

    # --- AlarmRaiser ---
    def register_alarms(self, manager: AlarmManager) -> None:
        self._manager = manager
        for d in self.definitions:
            manager.register_alarm(self, d.alarm_id, d.name, d.can_disable)
            logger.info("Created remote alarm %s (%s) @ %s", d.alarm_id, d.name, self.source)

    def request_update_alarms(self) -> None:
        """
        Send ``alarm-status`` to the peer. The answer arrives through
        :meth:`handle_message`.
        """
        if self.send_command is None:
            logger.debug("No link to %s, cannot request alarm status", self.source)
            return
        try:
            self.send_command(CommandMessage(COMMAND_ALARM_STATUS, sender=self.sender, target=self.source))
        except OSError as e:
            logger.warning("Requesting alarm status from %s failed: %r", self.source, e)

    # --- Inbound ---
    def handle_message(self, msg: PeerMessage) -> None:
        if isinstance(msg, AlarmAlert):
            self.handle_alert(msg)
        elif isinstance(msg, AlarmStatusReport):
            self.handle_status(msg)
        else:
            logger.debug("Ignoring %s from %s", type(msg).__name__, self.source)

    def handle_status(self, report: AlarmStatusReport) -> None:
        for alert in report.alerts():
            self.handle_alert(alert)

    def handle_alert(self, alert: AlarmAlert) -> None:
        """
        Apply one alarm state reported by the peer.

        Unknown alarm ids and unparseable states are logged and ignored.
        """
        if alert.alarm_id not in self.alarm_ids:
            logger.debug("Alert for unknown alarm %s from %s", alert.alarm_id, self.source)
            return
        with self._lock:
            self._reported[alert.alarm_id] = (alert.state, alert.message, alert.code)
        self._apply(alert.alarm_id, alert.state, alert.message, alert.code, f"Alert from {self.source}")

    def on_connection_changed(self, online: bool) -> None:
        """
        Mark the peer's alarms as disconnected when the link drops, and ask
        for a fresh status when it comes back.
        """
        with self._lock:
            if self._online == online:
                return
            self._online = online

        manager = self._manager
        if manager is None:
            return

        if not online:
            logger.warning("Source %s offline", self.source)
            for alarm_id in self.alarm_ids:
                self._set_source_code(alarm_id, CODE_SOURCE_OFFLINE, f"Source {self.source} offline")
            return

        logger.info("Source %s online", self.source)
        for alarm_id in self.alarm_ids:
            alarm = manager.get_alarm(alarm_id)
            if alarm is not None and alarm.code == CODE_SOURCE_OFFLINE:
                self._set_source_code(alarm_id, CODE_SOURCE_ONLINE, f"Source {self.source} online")
        self.request_update_alarms()

    # --- Internals ---
    def _set_source_code(self, alarm_id: str, code: int, message: str) -> None:
        manager = self._manager
        if manager is None:
            return
        try:
            if manager.is_alarm_disabled(alarm_id):
                return
            manager.update_alarm(alarm_id, manager.scheme.disconnected, message, code, comment=message)
        except AlarmError as e:
            logger.warning("Could not mark %s: %s", alarm_id, e)

    def _apply(self, alarm_id: str, raw_state: object, message: Optional[str], code: int, comment: str) -> None:
        manager = self._manager
        if manager is None:
            return
        scheme = manager.scheme
        try:
            if manager.is_alarm_disabled(alarm_id):
                logger.debug("Ignoring alert for disabled alarm %s", alarm_id)
                return
            try:
                state = scheme.parse(raw_state)
            except ValueError:
                logger.warning("Invalid state %r for %s from %s", raw_state, alarm_id, self.source)
                return
            # Disabling is a local operator decision; a peer-side disable means no data.
            if scheme.is_disabled(state):
                state = scheme.disconnected

            alarm = manager.get_alarm(alarm_id, throw_if_missing=True)
            if scheme.is_raised(state) and alarm.is_raised and not alarm.testing and alarm.state != state:
                manager.lower_alarm(alarm_id, message, NO_CODE, comment=f"Severity change from {self.source}")
            manager.update_alarm(alarm_id, state, message, code, comment=comment)
        except AlarmError as e:
            logger.warning("Alert for %s from %s rejected: %s", alarm_id, self.source, e)

"""
Output coordinator.

Derives the buzzer, pilot light and master interlock positions from the
manager's alarm set and applies them to the output devices on every change
event. The derivation itself is the pure function :func:`derive_outputs`;
:class:`OutputCoordinator` adds the stateful parts (buzzer silence periods,
device tests, manual master requests).
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Iterable, Optional

from bbalarms.core.alarm.alarm import AlarmSnapshot
from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.core.outputs.devices import SwitchOutput
from bbalarms.domain.events import AlarmChangeEvent, OutputState, TestStatusEvent
from bbalarms.domain.models import AlarmTest, SeverityScheme
from bbalarms.runtime.timers import Cancellable, OneShotTimer, TimerFactory

logger = logging.getLogger(__name__)


def derive_outputs(
    alarms: Iterable[AlarmSnapshot],
    scheme: SeverityScheme,
    silenced: bool = False,
    device_test: AlarmTest = AlarmTest.NONE,
) -> OutputState:
    """
    Compute output positions from the current alarm set.

    Rules
    -----
    - master ON iff any alarm is raised (tests included);
    - pilot ON iff any alarm is raised, or a pilot light test runs;
    - buzzer ON iff an alarm is at the most severe level and the buzzer is
      not silenced, or a buzzer test runs;
    - silence only counts while something is raised.

    Parameters
    ----------
    alarms
        Snapshots of every managed alarm.
    scheme
        Severity ordering of the alarms.
    silenced
        Whether a silence period is active.
    device_test
        Running device test, if any.

    Returns
    -------
    OutputState
        Derived positions.
    """
    raised = False
    highest = False
    for a in alarms:
        if scheme.is_raised(a.state):
            raised = True
            if a.state == scheme.highest:
                highest = True

    silenced = silenced and raised
    return OutputState(
        buzzer_on=(highest and not silenced) or device_test == AlarmTest.BUZZER,
        buzzer_silenced=silenced,
        pilot_on=raised or device_test == AlarmTest.PILOT_LIGHT,
        master_on=raised,
    )


class OutputCoordinator:
    """
    Keep the physical outputs in line with the alarm set.

    Concurrency Model
    -----------------
    Called from whichever thread fired the change event, from the silence
    timer and from operator commands. An internal lock serialises refreshes;
    the alarm snapshot is taken inside it, so the last refresh to apply its
    outputs is also the one that read the newest alarm set. The manager calls
    subscribers only after releasing its own lock, so the two locks are always
    taken in the order coordinator, then manager.

    Parameters
    ----------
    manager
        Alarm manager to follow.
    buzzer, pilot, master
        Output devices.
    timer_factory
        Schedules silence expiry.
    """

    def __init__(
        self,
        manager: AlarmManager,
        buzzer: SwitchOutput,
        pilot: SwitchOutput,
        master: SwitchOutput,
        timer_factory: TimerFactory = OneShotTimer.schedule,
    ):
        self._manager = manager
        self.buzzer = buzzer
        self.pilot = pilot
        self.master = master
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._silenced = False
        self._silence_timer: Optional[Cancellable] = None
        self._silence_tokens = itertools.count(1)
        self._silence_token = 0
        self._device_test = AlarmTest.NONE
        self._state = OutputState()

    def attach(self) -> None:
        """
        Subscribe to the manager's change and test events.
        """
        self._manager.subscribe(self.on_alarm_changed)
        self._manager.subscribe_tests(self.on_test_changed)
        self.refresh()

    # --- Event handlers ---
    def on_alarm_changed(self, ev: AlarmChangeEvent) -> None:
        self.refresh()

    def on_test_changed(self, ev: TestStatusEvent) -> None:
        if ev.test not in (AlarmTest.BUZZER, AlarmTest.PILOT_LIGHT):
            return
        with self._lock:
            self._device_test = ev.test if ev.active else AlarmTest.NONE
        self.refresh()

    # --- Derivation ---
    def refresh(self) -> OutputState:
        """
        Recompute and apply the output positions.
        """
        scheme = self._manager.scheme
        with self._lock:
            alarms = self._manager.snapshots()
            if self._silenced and not any(scheme.is_raised(a.state) for a in alarms):
                logger.info("No alarm raised, clearing buzzer silence")
                self._clear_silence()
            state = derive_outputs(alarms, scheme, self._silenced, self._device_test)
            self._apply(state)
            self._state = state
        return state

    def snapshot(self) -> OutputState:
        with self._lock:
            return self._state

    @property
    def is_silenced(self) -> bool:
        with self._lock:
            return self._silenced

    # --- Silence ---
    def silence(self, seconds: float) -> bool:
        """
        Silence the buzzer for `seconds`.

        Pilot light and master are unaffected. The request is rejected
        (returns False, no effect) if `seconds` is not positive, the buzzer is
        already silenced, or nothing is raised.
        """
        if seconds <= 0:
            logger.warning("Rejected silence request of %s s", seconds)
            return False
        raised = self._manager.is_alarm_raised()
        with self._lock:
            if self._silenced or not raised:
                logger.warning("Rejected silence request (silenced=%s raised=%s)", self._silenced, raised)
                return False
            self._silenced = True
            token = next(self._silence_tokens)
            self._silence_token = token
            self._silence_timer = self._timer_factory(seconds, lambda: self._silence_expired(token))
        logger.info("Buzzer silenced for %s s", seconds)
        self.refresh()
        return True

    def unsilence(self) -> bool:
        """
        End the silence period early. Returns True if the buzzer was silenced.
        """
        with self._lock:
            was_silenced = self._silenced
            self._clear_silence()
        if was_silenced:
            logger.info("Buzzer unsilenced")
        self.refresh()
        return was_silenced

    def _silence_expired(self, token: int) -> None:
        with self._lock:
            if not self._silenced or token != self._silence_token:
                return
            self._silenced = False
            self._silence_timer = None
        logger.info("Buzzer silence expired")
        self.refresh()

    def _clear_silence(self) -> None:
        self._silenced = False
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    # --- Master ---
    def set_master(self, on: bool) -> bool:
        """
        Operator request to switch the master output.

        Rejected (returns False) while the interlock is engaged by a raised
        alarm: only the manager drives the outputs then. Otherwise the
        requested position holds until the next recompute.
        """
        if self._manager.is_alarm_raised():
            logger.warning("Rejected master %s: interlock engaged", "on" if on else "off")
            return False
        with self._lock:
            if on:
                self.master.turn_on()
            else:
                self.master.turn_off()
            self._state = OutputState(
                buzzer_on=self._state.buzzer_on,
                buzzer_silenced=self._state.buzzer_silenced,
                pilot_on=self._state.pilot_on,
                master_on=on,
            )
        return True

    def _apply(self, state: OutputState) -> None:
        for device, on in ((self.master, state.master_on), (self.pilot, state.pilot_on), (self.buzzer, state.buzzer_on)):
            if on:
                device.turn_on()
            else:
                device.turn_off()

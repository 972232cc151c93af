"""
Alarm manager.

This module contains the stateful engine that owns every registered `Alarm`,
serialises all mutations, runs the single test slot and fans out change
events to subscribers.

Concurrency Model
-----------------
Updates arrive from several threads (raiser callbacks, inbound peer messages,
operator commands, timers). Every mutating operation holds one re-entrant
lock (`threading.RLock`) for its duration. Change events are collected while
the lock is held, queued in mutation order before it is released, and
delivered after it is released, so a slow or failing subscriber never blocks
or rolls back a transition.

One thread at a time drains the queue. Other writers wait until their own
events have been delivered, so subscribers (outputs, log, broadcast) always
see the transitions of an alarm in the order they were applied. A mutation
made from inside a subscriber is queued behind the event being delivered and
returns without waiting.

Test Slot
---------
Only one test (alarm, buzzer or pilot light) runs at a time, and only while
no alarm is raised. A real raise, or a real change to the alarm under test,
ends the running test before the real transition is applied.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional

from bbalarms.core.alarm.alarm import Alarm, AlarmSnapshot
from bbalarms.core.alarm.raiser_base import AlarmRaiser
from bbalarms.domain.errors import (
    AlarmError,
    AlarmNotFoundError,
    AlarmTestError,
    DuplicateAlarmError,
    InvalidAlarmArgumentError,
)
from bbalarms.domain.events import AlarmChangeEvent, AlarmTransition, TestStatusEvent
from bbalarms.domain.models import NO_CODE, SEVERITY_SCHEME, AlarmTest, SeverityScheme, StateValue
from bbalarms.runtime.timers import Cancellable, OneShotTimer, TimerFactory

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[AlarmChangeEvent], None]
TestCallback = Callable[[TestStatusEvent], None]


@dataclass
class _ActiveTest:
    kind: AlarmTest
    token: int
    alarm_id: Optional[str] = None
    timer: Optional[Cancellable] = None


@dataclass
class _Pending:
    """Notifications collected under the lock, delivered after release."""

    changes: List[AlarmChangeEvent] = field(default_factory=list)
    tests: List[TestStatusEvent] = field(default_factory=list)


class AlarmManager:
    """
    Owner of all alarms and of the transition / notification pipeline.

    Parameters
    ----------
    scheme
        Severity ordering shared by every alarm of this manager.
    timer_factory
        Schedules test expiry callbacks. Defaults to :meth:`OneShotTimer.schedule`.
    clock
        Source of "now" for timestamps and event times.
    """

    def __init__(
        self,
        scheme: SeverityScheme = SEVERITY_SCHEME,
        timer_factory: TimerFactory = OneShotTimer.schedule,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.scheme = scheme
        self._timer_factory = timer_factory
        self._clock = clock
        self._lock = threading.RLock()
        self._alarms: Dict[str, Alarm] = {}
        self._raisers: List[AlarmRaiser] = []
        self._subscribers: List[ChangeCallback] = []
        self._test_subscribers: List[TestCallback] = []
        self._test: Optional[_ActiveTest] = None
        self._test_tokens = itertools.count(1)
        self._delivery = threading.Condition()
        self._outbox: Deque[_Pending] = deque()
        self._enqueued = 0
        self._delivered = 0
        self._drainer: Optional[int] = None

    # --- Subscriptions ---
    def subscribe(self, callback: ChangeCallback) -> None:
        """
        Add a change-event subscriber. Subscribers are called in the order
        they were added, synchronously, after the manager lock is released.
        """
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def subscribe_tests(self, callback: TestCallback) -> None:
        """
        Add a subscriber for test slot start/end notifications.
        """
        with self._lock:
            if callback not in self._test_subscribers:
                self._test_subscribers.append(callback)

    # --- Registration ---
    def register_alarm(
        self,
        raiser: AlarmRaiser,
        alarm_id: str,
        name: Optional[str] = None,
        can_disable: bool = True,
    ) -> Alarm:
        """
        Create and store a fresh alarm bound to `raiser`.

        Raises
        ------
        InvalidAlarmArgumentError
            If `raiser` is None or `alarm_id` is empty.
        DuplicateAlarmError
            If `alarm_id` is already registered.
        """
        if raiser is None:
            raise InvalidAlarmArgumentError("An alarm must be registered by a raiser")
        if not alarm_id:
            raise InvalidAlarmArgumentError("An alarm id cannot be empty")

        with self._lock:
            if alarm_id in self._alarms:
                raise DuplicateAlarmError(f"There is already an alarm with ID {alarm_id}")
            alarm = Alarm(
                id=alarm_id,
                name=name,
                raiser=raiser,
                can_disable=can_disable,
                scheme=self.scheme,
                clock=self._clock,
            )
            self._alarms[alarm_id] = alarm

        logger.info("Registered alarm %s (%s)", alarm_id, name)
        return alarm

    def deregister_alarm(self, alarm_id: str, comment: Optional[str] = None) -> None:
        """
        Force the alarm to lower (so the change is logged and broadcast), then remove it.
        """
        pending = _Pending()
        with self._lock:
            alarm = self._require(alarm_id)
            if self._test is not None and self._test.alarm_id == alarm_id:
                self._clear_test(comment or f"Alarm {alarm_id} deregistered", pending)
            alarm.testing = False
            if alarm.lower(f"Alarm {alarm_id} deregistered"):
                pending.changes.append(self._change_event(alarm, comment))
            del self._alarms[alarm_id]
            seq = self._enqueue(pending)

        logger.info("Deregistered alarm %s", alarm_id)
        self._dispatch(seq)

    def add_raiser(self, raiser: AlarmRaiser) -> bool:
        """
        Add a raiser once and let it register its alarms.

        Returns
        -------
        bool
            True if the raiser was new, False if it was already known.
        """
        with self._lock:
            if raiser in self._raisers:
                return False
            self._raisers.append(raiser)

        raiser.register_alarms(self)
        return True

    def add_raisers(self, items: Iterable[object]) -> int:
        """
        Add every item that implements the raiser protocol; others are ignored.

        Returns
        -------
        int
            Number of raisers added.
        """
        added = 0
        for item in items:
            if isinstance(item, AlarmRaiser) and self.add_raiser(item):
                added += 1
        return added

    @property
    def raisers(self) -> List[AlarmRaiser]:
        with self._lock:
            return list(self._raisers)

    # --- Queries ---
    def get_alarm(self, alarm_id: str, throw_if_missing: bool = False) -> Optional[Alarm]:
        with self._lock:
            alarm = self._alarms.get(alarm_id)
        if alarm is None and throw_if_missing:
            raise AlarmNotFoundError(alarm_id)
        return alarm

    def has_alarm(self, alarm_id: str) -> bool:
        with self._lock:
            return alarm_id in self._alarms

    def has_alarm_with_state(self, state: StateValue) -> bool:
        state = self._parse(state)
        with self._lock:
            return any(a.state == state for a in self._alarms.values())

    def is_alarm_raised(self) -> bool:
        """
        True iff at least one alarm is in a raised state.
        """
        with self._lock:
            return self._any_raised()

    def is_alarm_disabled(self, alarm_id: str) -> bool:
        with self._lock:
            return self._require(alarm_id).is_disabled

    @property
    def alarms(self) -> List[Alarm]:
        with self._lock:
            return list(self._alarms.values())

    def snapshots(self) -> List[AlarmSnapshot]:
        """
        Consistent copy of every alarm, taken under the lock.
        """
        with self._lock:
            return [a.snapshot() for a in self._alarms.values()]

    @property
    def current_test(self) -> AlarmTest:
        with self._lock:
            return self._test.kind if self._test else AlarmTest.NONE

    @property
    def is_testing(self) -> bool:
        return self.current_test != AlarmTest.NONE

    @property
    def testing_alarm_id(self) -> Optional[str]:
        with self._lock:
            return self._test.alarm_id if self._test else None

    # --- Mutations ---
    def update_alarm(
        self,
        alarm_id: str,
        state: StateValue,
        message: Optional[str] = None,
        code: int = NO_CODE,
        comment: Optional[str] = None,
    ) -> Alarm:
        """
        Apply any validated transition and fire a change event if it changed
        the state or the code.

        Raises
        ------
        AlarmNotFoundError
            If the alarm is not registered.
        InvalidAlarmArgumentError
            If the state is not part of the severity scheme.
        InvalidAlarmTransitionError
            If the transition is not allowed.
        """
        pending = _Pending()
        with self._lock:
            alarm = self._require(alarm_id)
            state = self._parse(state)
            # The alarm under test is validated after the test has lowered it.
            under_test = self._test is not None and self._test.alarm_id == alarm_id
            if not under_test or self.scheme.is_disabled(state):
                alarm.validate(state)
            self._end_test_for_real_event(alarm, state, code, pending)
            if alarm.update(state, message, code):
                pending.changes.append(self._change_event(alarm, comment))
            seq = self._enqueue(pending)
        self._dispatch(seq)
        return alarm

    def raise_alarm(
        self,
        alarm_id: str,
        state: StateValue,
        message: Optional[str] = None,
        code: int = NO_CODE,
        comment: Optional[str] = None,
    ) -> Alarm:
        """
        Raise an alarm to `state`.

        Raises
        ------
        InvalidAlarmArgumentError
            If `state` is quiescent or disabled.
        """
        state = self._parse(state)
        if not self.scheme.is_raised(state):
            raise InvalidAlarmArgumentError(f"Alarm state {state.value} is not valid for raising an alarm")
        return self.update_alarm(alarm_id, state, message, code, comment)

    def lower_alarm(
        self,
        alarm_id: str,
        message: Optional[str] = None,
        code: int = NO_CODE,
        comment: Optional[str] = None,
    ) -> Alarm:
        return self.update_alarm(alarm_id, self.scheme.lowered, message, code, comment)

    def enable_alarm(self, alarm_id: str, enable: bool = True, comment: Optional[str] = None) -> Alarm:
        """
        Enable (DISABLED -> lowered) or disable an alarm. No-op if it already
        is in the requested state.
        """
        pending = _Pending()
        with self._lock:
            alarm = self._require(alarm_id)
            if not enable:
                alarm.validate(self.scheme.disabled)
                if not alarm.is_disabled:
                    self._end_test_for_real_event(alarm, self.scheme.disabled, NO_CODE, pending)
            if alarm.enable(enable):
                pending.changes.append(self._change_event(alarm, comment))
            seq = self._enqueue(pending)
        if pending.changes:
            logger.info("Alarm %s %s", alarm_id, "enabled" if enable else "disabled")
        self._dispatch(seq)
        return alarm

    def disable_alarm(self, alarm_id: str, comment: Optional[str] = None) -> Alarm:
        return self.enable_alarm(alarm_id, False, comment)

    # --- Testing ---
    def start_test(
        self,
        alarm_id: str,
        state: Optional[StateValue] = None,
        message: Optional[str] = None,
        code: int = NO_CODE,
        duration_s: Optional[float] = None,
        comment: Optional[str] = None,
    ) -> Alarm:
        """
        Raise `alarm_id` as a test.

        Parameters
        ----------
        alarm_id
            Alarm to test. Must currently be quiescent.
        state
            Raised state to test with; defaults to the most severe one.
        message
            Message for the test state.
        code
            Code for the test state.
        duration_s
            If given, the test ends automatically after this many seconds.
        comment
            Audit comment for the change event.

        Raises
        ------
        AlarmTestError
            If a test is already running, any alarm is raised, or the alarm
            is not quiescent.
        InvalidAlarmArgumentError
            If `state` is not a raised state or `duration_s` is not positive.
        """
        if duration_s is not None and duration_s <= 0:
            raise InvalidAlarmArgumentError("Test duration must be positive")

        pending = _Pending()
        with self._lock:
            self._check_can_start_test()
            alarm = self._require(alarm_id)
            if not alarm.is_lowered:
                raise AlarmTestError(f"Cannot test alarm {alarm_id} as it is {alarm.state.value}")

            state = self.scheme.highest if state is None else self._parse(state)
            if message is None:
                message = f"Start alarm test on {self._clock():%Y-%m-%d %H:%M:%S}"
            changed = alarm.start_test(state, message, code)

            test = _ActiveTest(kind=AlarmTest.ALARM, token=next(self._test_tokens), alarm_id=alarm_id)
            self._test = test
            if duration_s is not None:
                test.timer = self._timer_factory(duration_s, lambda: self._expire_test(test.token))

            if changed:
                pending.changes.append(self._change_event(alarm, comment or "Start alarm test"))
            pending.tests.append(TestStatusEvent(AlarmTest.ALARM, True, alarm_id, comment))
            seq = self._enqueue(pending)

        logger.info("Started alarm test on %s at %s for %s s", alarm_id, state.value, duration_s)
        self._dispatch(seq)
        return alarm

    def start_device_test(self, test: AlarmTest, duration_s: Optional[float] = None) -> None:
        """
        Occupy the test slot with a buzzer or pilot light test.

        Output coordinators learn about it through :meth:`subscribe_tests`.

        Raises
        ------
        InvalidAlarmArgumentError
            If `test` is not a device test or `duration_s` is not positive.
        AlarmTestError
            If a test is already running or any alarm is raised.
        """
        if test not in (AlarmTest.BUZZER, AlarmTest.PILOT_LIGHT):
            raise InvalidAlarmArgumentError(f"{test.value} is not a device test")
        if duration_s is not None and duration_s <= 0:
            raise InvalidAlarmArgumentError("Test duration must be positive")

        pending = _Pending()
        with self._lock:
            self._check_can_start_test()
            active = _ActiveTest(kind=test, token=next(self._test_tokens))
            self._test = active
            if duration_s is not None:
                active.timer = self._timer_factory(duration_s, lambda: self._expire_test(active.token))
            pending.tests.append(TestStatusEvent(test, True))
            seq = self._enqueue(pending)

        logger.info("Started %s test for %s s", test.value, duration_s)
        self._dispatch(seq)

    def end_test(self, alarm_id: Optional[str] = None, comment: Optional[str] = None) -> AlarmTest:
        """
        End the running test, if any, and cancel its countdown.

        Parameters
        ----------
        alarm_id
            If given, the running test must be an alarm test on this alarm.
        comment
            Reason recorded on the change event.

        Returns
        -------
        AlarmTest
            The kind of test that was ended (``NONE`` if nothing was running).

        Raises
        ------
        AlarmTestError
            If `alarm_id` is given and is not the alarm under test.
        """
        pending = _Pending()
        with self._lock:
            if self._test is None:
                return AlarmTest.NONE
            if alarm_id is not None and self._test.alarm_id != alarm_id:
                raise AlarmTestError(f"Alarm {alarm_id} is not being tested")
            kind = self._test.kind
            self._clear_test(comment or "End test", pending)
            seq = self._enqueue(pending)
        self._dispatch(seq)
        return kind

    # --- Polling ---
    def request_update_alarms(self, alarm_id: Optional[str] = None) -> None:
        """
        Ask one raiser (the owner of `alarm_id`) or all raisers to push a
        fresh reading. Does not wait for the answer.

        Raises
        ------
        AlarmNotFoundError
            If `alarm_id` is given and unknown.
        AlarmError
            If the alarm has no raiser.
        """
        with self._lock:
            if alarm_id is not None:
                alarm = self._require(alarm_id)
                if alarm.raiser is None:
                    raise AlarmError(f"Alarm {alarm_id} does not have a raiser")
                targets = [alarm.raiser]
            else:
                targets = list(self._raisers)

        for raiser in targets:
            try:
                raiser.request_update_alarms()
            except Exception:
                logger.exception("Raiser %r failed to request an alarm update", raiser)

    # --- Internals (lock held) ---
    def _require(self, alarm_id: str) -> Alarm:
        alarm = self._alarms.get(alarm_id)
        if alarm is None:
            raise AlarmNotFoundError(alarm_id)
        return alarm

    def _parse(self, state: object) -> StateValue:
        try:
            return self.scheme.parse(state)
        except ValueError as e:
            raise InvalidAlarmArgumentError(str(e)) from None

    def _any_raised(self) -> bool:
        return any(a.is_raised for a in self._alarms.values())

    def _check_can_start_test(self) -> None:
        if self._test is not None:
            raise AlarmTestError(f"Cannot run test, already testing {self._test.kind.value}")
        if self._any_raised():
            raise AlarmTestError("Cannot test while an alarm is raised")

    def _end_test_for_real_event(self, alarm: Alarm, state: StateValue, code: int, pending: _Pending) -> None:
        """
        End the running test if a real (non-test) transition is about to be
        applied that is either a raise, or a change to the alarm under test.
        """
        if self._test is None:
            return
        under_test = self._test.alarm_id == alarm.id
        if self.scheme.is_raised(state) or (under_test and (state != alarm.state or code != alarm.code)):
            self._clear_test(f"Ending test because {alarm.id} changed state to {state.value}", pending)

    def _clear_test(self, comment: str, pending: _Pending) -> None:
        test = self._test
        if test is None:
            return
        self._test = None
        if test.timer is not None:
            test.timer.cancel()

        if test.kind == AlarmTest.ALARM and test.alarm_id in self._alarms:
            alarm = self._alarms[test.alarm_id]
            if alarm.end_test():
                pending.changes.append(self._change_event(alarm, comment, testing=True))

        pending.tests.append(TestStatusEvent(test.kind, False, test.alarm_id, comment))
        logger.info("Ended %s test: %s", test.kind.value, comment)

    def _expire_test(self, token: int) -> None:
        pending = _Pending()
        with self._lock:
            if self._test is None or self._test.token != token:
                return
            self._clear_test(f"End {self._test.kind.value.lower()} test after timeout", pending)
            seq = self._enqueue(pending)
        self._dispatch(seq)

    def _change_event(self, alarm: Alarm, comment: Optional[str], testing: Optional[bool] = None) -> AlarmChangeEvent:
        if alarm.has_changed_state:
            if self.scheme.is_raised(alarm.state):
                transition = AlarmTransition.RAISED
            elif self.scheme.is_quiescent(alarm.state):
                transition = AlarmTransition.LOWERED
            else:
                transition = AlarmTransition.DISABLED
        else:
            transition = AlarmTransition.UPDATED

        return AlarmChangeEvent(
            alarm_id=alarm.id,
            name=alarm.name,
            state=alarm.state,
            previous_state=alarm.previous_state,
            transition=transition,
            timestamp=self._clock(),
            message=alarm.message,
            code=alarm.code,
            testing=alarm.testing if testing is None else testing,
            comment=comment,
        )

    # --- Delivery (lock released) ---
    def _enqueue(self, pending: _Pending) -> int:
        """Queue notifications (manager lock held) and return their sequence number."""
        if not pending.changes and not pending.tests:
            return 0
        with self._delivery:
            self._outbox.append(pending)
            self._enqueued += 1
            return self._enqueued

    def _dispatch(self, seq: int) -> None:
        """
        Deliver queued notifications up to `seq`, in queue order.
        """
        if seq == 0:
            return
        me = threading.get_ident()
        with self._delivery:
            if self._drainer == me:
                return
            while self._drainer is not None and self._delivered < seq:
                self._delivery.wait()
            if self._delivered >= seq:
                return
            self._drainer = me

        try:
            while True:
                with self._delivery:
                    if not self._outbox:
                        break
                    pending = self._outbox.popleft()
                self._deliver(pending)
                with self._delivery:
                    self._delivered += 1
                    self._delivery.notify_all()
        finally:
            with self._delivery:
                self._drainer = None
                self._delivery.notify_all()

    def _deliver(self, pending: _Pending) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            test_subscribers = list(self._test_subscribers)

        for ts in pending.tests:
            for cb in test_subscribers:
                try:
                    cb(ts)
                except Exception:
                    logger.exception("Test subscriber failed for %s", ts.test.value)

        for ev in pending.changes:
            logger.info(
                "Alarm %s %s -> %s (code=%s testing=%s)",
                ev.alarm_id, ev.previous_state.value, ev.state.value, ev.code, ev.testing,
            )
            for cb in subscribers:
                try:
                    cb(ev)
                except Exception:
                    logger.exception("Alarm change subscriber failed for %s", ev.alarm_id)

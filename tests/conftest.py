"""
Shared test doubles.

- `ManualTimerFactory`: records scheduled callbacks instead of starting
  threads; tests fire them explicitly.
- `FakeClock`: settable "now".
- `FakeRaiser`: registers a fixed list of alarms and counts update requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import pytest

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.core.outputs.devices import MemorySwitch
from bbalarms.core.outputs.output_coordinator import OutputCoordinator
from bbalarms.core.state.alarm_log import MemoryAlarmLog
from bbalarms.domain.models import SEVERITY_SCHEME, AlarmDefinition, SeverityScheme
from bbalarms.runtime.event_bus import EventBus
from bbalarms.services.alarms_service import AlarmsService


@dataclass
class ManualTimer:
    """Timer handle that only fires when the test says so."""
    delay_s: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


@dataclass
class ManualTimerFactory:
    """Callable matching the TimerFactory signature."""
    timers: List[ManualTimer] = field(default_factory=list)

    def __call__(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        t = ManualTimer(delay_s, callback)
        self.timers.append(t)
        return t

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def last(self) -> Optional[ManualTimer]:
        return self.timers[-1] if self.timers else None

    def fire_all(self) -> None:
        for t in list(self.pending):
            t.fire()


@dataclass
class FakeClock:
    now: datetime = datetime(2026, 1, 1, 10, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@dataclass(eq=False)
class FakeRaiser:
    """
    Raiser registering `alarm_ids`; ids listed in `fixed` cannot be disabled.
    """
    alarm_ids: Sequence[str]
    fixed: Sequence[str] = ()
    requests: int = 0
    fail_requests: bool = False

    def register_alarms(self, manager: AlarmManager) -> None:
        for alarm_id in self.alarm_ids:
            manager.register_alarm(self, alarm_id, alarm_id.upper(), can_disable=alarm_id not in self.fixed)

    def request_update_alarms(self) -> None:
        self.requests += 1
        if self.fail_requests:
            raise RuntimeError("source unreachable")


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_manager(timers: ManualTimerFactory, clock: FakeClock):
    """
    Build a manager with manual timers and a fake clock, and register a
    FakeRaiser for the given ids.
    """
    def _make(
        alarm_ids: Sequence[str] = ("a1", "a2"),
        fixed: Sequence[str] = (),
        scheme: SeverityScheme = SEVERITY_SCHEME,
    ) -> AlarmManager:
        manager = AlarmManager(scheme=scheme, timer_factory=timers, clock=clock)
        manager.add_raiser(FakeRaiser(list(alarm_ids), list(fixed)))
        return manager

    return _make


@pytest.fixture
def make_coordinator(timers: ManualTimerFactory):
    def _make(manager: AlarmManager) -> OutputCoordinator:
        coordinator = OutputCoordinator(
            manager,
            buzzer=MemorySwitch("buzzer"),
            pilot=MemorySwitch("pilot"),
            master=MemorySwitch("master"),
            timer_factory=timers,
        )
        coordinator.attach()
        return coordinator

    return _make


@pytest.fixture
def fake_raiser_cls():
    return FakeRaiser


@pytest.fixture
def make_service(make_manager, make_coordinator, clock: FakeClock):
    """
    Build an attached AlarmsService over a fake-raiser manager, an in-memory
    log holding a definition per id, and (by default) an event bus.
    """
    def _make(
        alarm_ids: Sequence[str] = ("a1", "a2"),
        fixed: Sequence[str] = (),
        with_bus: bool = True,
    ) -> AlarmsService:
        manager = make_manager(alarm_ids, fixed)
        log = MemoryAlarmLog([AlarmDefinition(a, a.upper(), pin=i + 1) for i, a in enumerate(alarm_ids)], clock=clock)
        service = AlarmsService(manager, make_coordinator(manager), log, EventBus() if with_bus else None)
        service.attach()
        return service

    return _make

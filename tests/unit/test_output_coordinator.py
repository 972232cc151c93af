"""
Unit tests for bbalarms.core.outputs.output_coordinator.

Validates:
- `derive_outputs` rules for master, pilot light and buzzer
- buzzer follows a timed alarm test and goes quiet when it expires
- silence suppresses the buzzer across recomputes and expires on its timer
- silence is rejected when nothing is raised, already silenced, or seconds <= 0
- silence clears itself once every alarm is lowered
- master requests are rejected while the interlock is engaged
- buzzer and pilot light device tests
"""

from __future__ import annotations

from bbalarms.core.alarm.alarm import AlarmSnapshot
from bbalarms.core.outputs.output_coordinator import derive_outputs
from bbalarms.domain.events import OutputState
from bbalarms.domain.models import SEVERITY_SCHEME, AlarmState, AlarmTest


def _snap(alarm_id: str, state: AlarmState) -> AlarmSnapshot:
    return AlarmSnapshot(
        id=alarm_id,
        name=None,
        state=state,
        message=None,
        code=0,
        can_disable=True,
        testing=False,
        last_raised=None,
        last_lowered=None,
        last_disabled=None,
    )


# --- derive_outputs ---
def test_derive_outputs_nothing_raised() -> None:
    alarms = [_snap("a1", AlarmState.LOWERED), _snap("a2", AlarmState.DISABLED), _snap("a3", AlarmState.DISCONNECTED)]

    assert derive_outputs(alarms, SEVERITY_SCHEME) == OutputState()


def test_derive_outputs_minor_lights_pilot_without_buzzer() -> None:
    out = derive_outputs([_snap("a1", AlarmState.MINOR)], SEVERITY_SCHEME)

    assert out == OutputState(buzzer_on=False, buzzer_silenced=False, pilot_on=True, master_on=True)


def test_derive_outputs_critical_sounds_buzzer_unless_silenced() -> None:
    alarms = [_snap("a1", AlarmState.LOWERED), _snap("a2", AlarmState.CRITICAL)]

    assert derive_outputs(alarms, SEVERITY_SCHEME).buzzer_on is True

    silenced = derive_outputs(alarms, SEVERITY_SCHEME, silenced=True)
    assert silenced.buzzer_on is False
    assert silenced.buzzer_silenced is True
    assert silenced.pilot_on is True and silenced.master_on is True


def test_derive_outputs_silence_only_counts_while_raised() -> None:
    out = derive_outputs([_snap("a1", AlarmState.LOWERED)], SEVERITY_SCHEME, silenced=True)

    assert out.buzzer_silenced is False


def test_derive_outputs_device_tests() -> None:
    alarms = [_snap("a1", AlarmState.LOWERED)]

    buzzer = derive_outputs(alarms, SEVERITY_SCHEME, device_test=AlarmTest.BUZZER)
    assert buzzer == OutputState(buzzer_on=True, pilot_on=False, master_on=False)

    pilot = derive_outputs(alarms, SEVERITY_SCHEME, device_test=AlarmTest.PILOT_LIGHT)
    assert pilot == OutputState(buzzer_on=False, pilot_on=True, master_on=False)


# --- Coordinator scenarios ---
def test_timed_test_sounds_buzzer_then_stops(make_manager, make_coordinator, timers) -> None:
    manager = make_manager(["smoke1"])
    coordinator = make_coordinator(manager)

    manager.start_test("smoke1", AlarmState.CRITICAL, "test", duration_s=5)
    assert coordinator.buzzer.is_on is True
    assert coordinator.master.is_on is True

    timers.last.fire()

    assert manager.get_alarm("smoke1").state == AlarmState.LOWERED
    assert coordinator.buzzer.is_on is False
    assert coordinator.pilot.is_on is False
    assert coordinator.master.is_on is False


def test_silence_suppresses_buzzer_until_expiry(make_manager, make_coordinator, timers) -> None:
    manager = make_manager(["a1", "a2"])
    coordinator = make_coordinator(manager)
    manager.raise_alarm("a1", AlarmState.CRITICAL)
    assert coordinator.buzzer.is_on is True

    assert coordinator.silence(60) is True
    silence_timer = timers.last
    assert silence_timer.delay_s == 60
    assert coordinator.buzzer.is_on is False
    assert coordinator.pilot.is_on is True
    assert coordinator.master.is_on is True

    # another event recomputes outputs; silence holds
    manager.raise_alarm("a2", AlarmState.MINOR)
    assert coordinator.buzzer.is_on is False
    assert coordinator.snapshot().buzzer_silenced is True

    silence_timer.fire()

    assert coordinator.is_silenced is False
    assert coordinator.buzzer.is_on is True


def test_silence_rejections(make_manager, make_coordinator) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)

    assert coordinator.silence(60) is False

    manager.raise_alarm("a1", AlarmState.CRITICAL)
    assert coordinator.silence(0) is False
    assert coordinator.silence(-5) is False
    assert coordinator.silence(60) is True
    assert coordinator.silence(60) is False


def test_silence_clears_when_everything_lowers(make_manager, make_coordinator, timers) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)
    manager.raise_alarm("a1", AlarmState.CRITICAL)
    coordinator.silence(300)
    silence_timer = timers.last

    manager.lower_alarm("a1")

    assert coordinator.is_silenced is False
    assert silence_timer.cancelled is True

    manager.raise_alarm("a1", AlarmState.CRITICAL)
    assert coordinator.buzzer.is_on is True


def test_unsilence(make_manager, make_coordinator) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)
    manager.raise_alarm("a1", AlarmState.CRITICAL)
    coordinator.silence(60)

    assert coordinator.unsilence() is True
    assert coordinator.buzzer.is_on is True
    assert coordinator.unsilence() is False


def test_stale_silence_timer_is_ignored(make_manager, make_coordinator, timers) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)
    manager.raise_alarm("a1", AlarmState.CRITICAL)

    coordinator.silence(60)
    stale = timers.last
    coordinator.unsilence()
    coordinator.silence(120)

    stale.callback()

    assert coordinator.is_silenced is True
    assert coordinator.buzzer.is_on is False


def test_master_request_rejected_while_interlock_engaged(make_manager, make_coordinator) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)

    assert coordinator.set_master(True) is True
    assert coordinator.master.is_on is True
    assert coordinator.snapshot().master_on is True

    # next recompute takes the master back
    manager.disable_alarm("a1")
    assert coordinator.master.is_on is False

    manager.enable_alarm("a1")
    manager.raise_alarm("a1", AlarmState.MINOR)
    assert coordinator.set_master(False) is False
    assert coordinator.master.is_on is True


def test_device_tests_drive_outputs(make_manager, make_coordinator, timers) -> None:
    manager = make_manager(["a1"])
    coordinator = make_coordinator(manager)

    manager.start_device_test(AlarmTest.BUZZER, 5)
    assert coordinator.buzzer.is_on is True
    assert coordinator.master.is_on is False
    timers.last.fire()
    assert coordinator.buzzer.is_on is False

    manager.start_device_test(AlarmTest.PILOT_LIGHT, 5)
    assert coordinator.pilot.is_on is True
    assert coordinator.buzzer.is_on is False
    manager.end_test()
    assert coordinator.pilot.is_on is False

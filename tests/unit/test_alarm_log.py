"""
Unit tests for bbalarms.core.state.alarm_log.

Validates:
- only enabled definitions are loaded
- log records get increasing ids and the scheme's state names
- logging for an unknown alarm is rejected
- last raised / lowered / disabled follow the latest record in each bucket
- the in-memory history is bounded; last-* answers and ids outlive eviction
- the NDJSON log appends to its file, survives a reload and skips bad lines
"""

from __future__ import annotations

import json

import pytest

from bbalarms.core.state.alarm_log import MemoryAlarmLog, NdjsonAlarmLog
from bbalarms.domain.errors import AlarmNotFoundError
from bbalarms.domain.models import AlarmDefinition, AlarmState

DEFS = [
    AlarmDefinition("a1", "Bilge", pin=7),
    AlarmDefinition("a2", "Fire", pin=8, enabled=False),
]


def test_load_alarm_definitions_skips_disabled_definitions() -> None:
    log = MemoryAlarmLog(DEFS)

    assert [d.alarm_id for d in log.load_alarm_definitions()] == ["a1"]


def test_log_change_assigns_increasing_ids(clock) -> None:
    log = MemoryAlarmLog(DEFS, clock=clock)

    first = log.log_change("a1", AlarmState.CRITICAL, "high water", 0, "switch")
    second = log.log_change("a1", "lowered")

    assert (first, second) == (1, 2)
    records = log.records_for("a1")
    assert [r.state for r in records] == ["CRITICAL", "LOWERED"]
    assert records[0].comment == "switch"
    assert records[0].logged_at == clock.now


def test_log_change_for_unknown_alarm_is_rejected() -> None:
    log = MemoryAlarmLog(DEFS)

    with pytest.raises(AlarmNotFoundError):
        log.log_change("nope", AlarmState.MINOR)


def test_last_timestamps_per_bucket(clock) -> None:
    log = MemoryAlarmLog(DEFS, clock=clock)
    assert log.last_raised("a1") is None

    log.log_change("a1", AlarmState.MINOR)
    raised_at = clock.now
    clock.advance(10)
    log.log_change("a1", AlarmState.DISCONNECTED)
    lowered_at = clock.now
    clock.advance(10)
    log.log_change("a1", AlarmState.DISABLED)

    assert log.last_raised("a1") == raised_at
    assert log.last_lowered("a1") == lowered_at
    assert log.last_disabled("a1") == clock.now


def test_clear_keeps_definitions() -> None:
    log = MemoryAlarmLog(DEFS)
    log.log_change("a1", AlarmState.MINOR)

    log.clear()

    assert log.records == []
    assert log.get_definition("a1") is not None
    assert log.last_raised("a1") is None
    assert log.log_change("a1", AlarmState.LOWERED) == 2


def test_history_is_bounded_but_last_timestamps_survive_eviction(clock) -> None:
    log = MemoryAlarmLog(DEFS, clock=clock, history_size=3)

    log.log_change("a1", AlarmState.CRITICAL)
    raised_at = clock.now
    for _ in range(5):
        clock.advance(1)
        log.log_change("a1", AlarmState.LOWERED)

    assert [r.record_id for r in log.records] == [4, 5, 6]
    assert all(r.state == "LOWERED" for r in log.records_for("a1"))
    assert log.last_raised("a1") == raised_at
    assert log.last_lowered("a1") == clock.now
    assert log.log_change("a1", AlarmState.MINOR) == 7


def test_history_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        MemoryAlarmLog(DEFS, history_size=0)


def test_ndjson_reload_keeps_latest_records_within_history(tmp_path, clock) -> None:
    path = tmp_path / "alarm_log.ndjson"
    log = NdjsonAlarmLog(path, DEFS, clock=clock)
    log.log_change("a1", AlarmState.SEVERE)
    raised_at = clock.now
    for _ in range(4):
        clock.advance(1)
        log.log_change("a1", AlarmState.LOWERED)

    reloaded = NdjsonAlarmLog(path, DEFS, clock=clock, history_size=2)

    assert [r.record_id for r in reloaded.records] == [4, 5]
    assert len(path.read_text(encoding="utf-8").splitlines()) == 5
    assert reloaded.last_raised("a1") == raised_at
    assert reloaded.log_change("a1", AlarmState.MINOR) == 6

def test_ndjson_log_appends_and_reloads(tmp_path, clock) -> None:
    path = tmp_path / "logs" / "alarm_log.ndjson"
    log = NdjsonAlarmLog(path, DEFS, clock=clock)

    log.log_change("a1", AlarmState.SEVERE, "msg", 3)
    log.log_change("a1", AlarmState.LOWERED)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["state"] == "SEVERE"

    reloaded = NdjsonAlarmLog(path, DEFS, clock=clock)
    assert len(reloaded.records) == 2
    assert reloaded.records[0].code == 3
    assert reloaded.last_raised("a1") == clock.now
    assert reloaded.log_change("a1", AlarmState.MINOR) == 3


def test_ndjson_log_skips_bad_lines(tmp_path, clock) -> None:
    path = tmp_path / "alarm_log.ndjson"
    good = {
        "record_id": 7,
        "alarm_id": "a1",
        "state": "MINOR",
        "logged_at": "2026-01-01T09:00:00",
    }
    path.write_text("not json\n" + json.dumps(good) + "\n" + '{"record_id": 8}\n', encoding="utf-8")

    log = NdjsonAlarmLog(path, DEFS, clock=clock)

    assert [r.record_id for r in log.records] == [7]
    assert log.log_change("a1", AlarmState.LOWERED) == 8

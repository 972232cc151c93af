"""
Unit tests for bbalarms.notification.notification_thread.

- alerts are retried with backoff, then given up
- status reports get a single attempt
- a status report superseded by a newer one is skipped
- every notifier receives the notification
- the worker drains notifications on its thread and stops on request
"""

from __future__ import annotations

import threading
from typing import List

from bbalarms.notification.base import KIND_ALERT, KIND_STATUS, AlarmNotification
from bbalarms.notification.notification_thread import NotificationThreadConfig, NotificationWorkerThread

ALERT = AlarmNotification(
    kind=KIND_ALERT,
    payload={"alert": {"alarm_id": "bilge1"}},
    timestamp="2026-01-01T10:00:00",
    alarm_id="bilge1",
    state="CRITICAL",
)


def _status(ts: str) -> AlarmNotification:
    return AlarmNotification(kind=KIND_STATUS, payload={"status": {}}, timestamp=ts)


class _Flaky:
    def __init__(self, failures: int, expected: int = 1) -> None:
        self.failures = failures
        self.expected = expected
        self.calls = 0
        self.delivered: List[AlarmNotification] = []
        self.done = threading.Event()

    def notify(self, notification: AlarmNotification) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("webhook down")
        self.delivered.append(notification)
        if len(self.delivered) >= self.expected:
            self.done.set()


def _cfg(retry_count: int = 2) -> NotificationThreadConfig:
    return NotificationThreadConfig(retry_count=retry_count, retry_backoff_s=0.0, poll_timeout_s=0.05)


def test_alert_delivery_recovers_after_retries() -> None:
    flaky = _Flaky(failures=2)
    worker = NotificationWorkerThread([flaky], _cfg(retry_count=2))

    assert worker._deliver(flaky, ALERT) is True
    assert flaky.calls == 3
    assert flaky.delivered == [ALERT]


def test_alert_delivery_gives_up() -> None:
    flaky = _Flaky(failures=10)
    worker = NotificationWorkerThread([flaky], _cfg(retry_count=2))

    assert worker._deliver(flaky, ALERT) is False
    assert flaky.calls == 3


def test_status_report_is_not_retried() -> None:
    flaky = _Flaky(failures=1)
    worker = NotificationWorkerThread([flaky], _cfg(retry_count=5))

    assert worker._deliver(flaky, _status("2026-01-01T10:00:00")) is False
    assert flaky.calls == 1


def test_stop_interrupts_backoff() -> None:
    flaky = _Flaky(failures=10)
    cfg = NotificationThreadConfig(retry_count=3, retry_backoff_s=30.0, poll_timeout_s=0.05)
    worker = NotificationWorkerThread([flaky], cfg)
    worker._stop.set()

    assert worker._deliver(flaky, ALERT) is False
    assert flaky.calls == 1


def test_superseded_status_report_is_skipped() -> None:
    ok = _Flaky(failures=0, expected=2)
    worker = NotificationWorkerThread([ok], _cfg())
    older = _status("2026-01-01T10:00:00")
    newer = _status("2026-01-01T10:00:05")

    worker.emit(older)
    worker.emit(ALERT)
    worker.emit(newer)
    worker.start()
    assert ok.done.wait(2.0)
    worker.stop()

    assert ok.delivered == [ALERT, newer]


def test_worker_delivers_to_every_notifier() -> None:
    broken = _Flaky(failures=100)
    ok = _Flaky(failures=0)
    worker = NotificationWorkerThread([broken, ok], _cfg(retry_count=0))

    worker.start()
    worker.emit(ALERT)
    assert ok.done.wait(2.0)
    worker.stop()

    assert ok.delivered == [ALERT]
    assert broken.calls == 1

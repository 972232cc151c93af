from __future__ import annotations

import logging
import threading
from queue import Empty

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.domain.events import Broadcast, StatusBroadcast
from bbalarms.notification.base import AlarmNotification
from bbalarms.notification.notification_thread import NotificationWorkerThread
from bbalarms.notification.payload import build_alarm_webhook_payload, build_status_webhook_payload
from bbalarms.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


class NotificationAdapterThread:
    """
    Adapter thread that bridges broadcasts -> NotificationWorkerThread.

    Responsibilities
    ----------------
    - Drain `EventBus.broadcasts_q`.
    - Build a webhook payload (alert or status) with totals from the
      manager's current snapshots.
    - Emit `AlarmNotification` objects into `NotificationWorkerThread`.

    Concurrency Model
    -----------------
    - Runs as a daemon thread.
    - Polls the queue with a timeout to remain responsive to stop signals.
    - Any exception while building or emitting is logged and the loop goes on.

    Parameters
    ----------
    bus
        Event bus providing the broadcast queue.
    manager
        Alarm manager used for the totals snapshot.
    notifier
        Notification worker responsible for actual sending.
    stop_event
        Stop signal for the thread.
    """

    def __init__(
        self,
        bus: EventBus,
        manager: AlarmManager,
        notifier: NotificationWorkerThread,
        stop_event: threading.Event,
    ):
        self._bus = bus
        self._manager = manager
        self._notifier = notifier
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name="notification-adapter", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def handle(self, msg: Broadcast) -> AlarmNotification:
        """
        Convert one broadcast into a notification and emit it.
        """
        snaps = self._manager.snapshots()
        scheme = self._manager.scheme
        if isinstance(msg, StatusBroadcast):
            notification = AlarmNotification.for_status(msg, build_status_webhook_payload(msg, snaps, scheme))
        else:
            notification = AlarmNotification.for_alert(msg, build_alarm_webhook_payload(msg, snaps, scheme))
        self._notifier.emit(notification)
        return notification

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                msg: Broadcast = self._bus.broadcasts_q.get(timeout=0.5)
            except Empty:
                continue

            try:
                self.handle(msg)
            except Exception:
                logger.exception("Notification adapter failed on %s for %s", msg.kind, msg.alarm_id or "all alarms")

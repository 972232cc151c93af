from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional

from bbalarms.notification.base import AlarmNotification, Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationThreadConfig:
    max_queue: int = 2000
    retry_count: int = 3
    retry_backoff_s: float = 0.5
    poll_timeout_s: float = 0.5


class NotificationWorkerThread:
    """
    Deliver alarm notifications to every notifier on a background thread.

    Delivery Policy
    ---------------
    - Alerts are retried with exponential backoff; after the last attempt the
      failure is logged and the alert dropped for that notifier.
    - Status reports are sent once. A report still queued when a newer one
      arrives is skipped; the next poll sends a fresh one anyway.
    - Stopping interrupts a backoff wait.
    """

    def __init__(self, notifiers: List[Notifier], cfg: NotificationThreadConfig | None = None):
        self._notifiers = notifiers
        self._cfg = cfg or NotificationThreadConfig()
        self._q: "queue.Queue[Optional[AlarmNotification]]" = queue.Queue(maxsize=self._cfg.max_queue)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._latest_status: Optional[AlarmNotification] = None
        self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._q.put_nowait(None)
        except queue.Full:
            pass
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def emit(self, notification: AlarmNotification) -> None:
        if notification.is_status:
            with self._lock:
                self._latest_status = notification
        try:
            self._q.put_nowait(notification)
        except queue.Full:
            logger.warning("Notification queue full, dropped %s", notification.label)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                notification = self._q.get(timeout=self._cfg.poll_timeout_s)
            except queue.Empty:
                continue

            if notification is None:
                break
            if self._is_superseded(notification):
                logger.debug("Skipping superseded status report from %s", notification.timestamp)
                continue

            for notifier in self._notifiers:
                self._deliver(notifier, notification)

    def _is_superseded(self, notification: AlarmNotification) -> bool:
        if not notification.is_status:
            return False
        with self._lock:
            return notification is not self._latest_status

    def _deliver(self, notifier: Notifier, notification: AlarmNotification) -> bool:
        attempts = 1 if notification.is_status else self._cfg.retry_count + 1
        name = type(notifier).__name__
        for attempt in range(attempts):
            try:
                notifier.notify(notification)
                return True
            except Exception as e:
                if attempt + 1 >= attempts:
                    logger.error("%s gave up on %s after %d attempt(s): %r", name, notification.label, attempt + 1, e)
                    return False
                logger.warning("%s failed on %s (attempt %d): %r", name, notification.label, attempt + 1, e)
                if self._stop.wait(self._cfg.retry_backoff_s * (2 ** attempt)):
                    logger.warning("%s dropped %s on shutdown", name, notification.label)
                    return False
        return False

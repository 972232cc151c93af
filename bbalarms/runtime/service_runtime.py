from __future__ import annotations

import logging
import threading
from typing import List, Optional

from bbalarms.notification.notification_thread import NotificationWorkerThread
from bbalarms.runtime.event_bus import EventBus
from bbalarms.runtime.notification_adapter_thread import NotificationAdapterThread
from bbalarms.runtime.peer_link_thread import PeerLinkThread
from bbalarms.runtime.timers import RepeatingTimer
from bbalarms.services.alarms_service import AlarmsService

logger = logging.getLogger(__name__)


class ServiceRuntime:
    """
    Thread supervisor for the alarms service.

    This class owns:
    - a shared stop event
    - thread lifecycles (start/stop/join)

    Thread Topology
    ---------------
    1) PeerLinkThread, one per peer (I/O)
       - owns the TCP connection to the peer
       - feeds decoded alerts to the remote raiser
    2) RepeatingTimer "alarm-poll"
       - asks every raiser for a fresh reading every poll interval
    3) NotificationAdapterThread (adapter)
       - drains broadcasts from the event bus into the notification worker
    4) NotificationWorkerThread (optional, owns its own lifecycle)

    Notes
    -----
    Stop is cooperative: threads check the stop event and exit; peer links
    also close their socket to unblock ``recv``.
    """

    def __init__(
        self,
        service: AlarmsService,
        bus: EventBus,
        poll_interval_s: float,
        peer_links: Optional[List[PeerLinkThread]] = None,
        notifier: Optional[NotificationWorkerThread] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self._service = service
        self._bus = bus
        self._notifier = notifier
        self._stop = stop_event or threading.Event()
        self.peer_links = list(peer_links or [])
        self._poller = RepeatingTimer(poll_interval_s, service.poll, name="alarm-poll", stop_event=self._stop)
        self._notify_adapter: Optional[NotificationAdapterThread] = None
        if notifier is not None:
            self._notify_adapter = NotificationAdapterThread(
                bus=bus,
                manager=service.manager,
                notifier=notifier,
                stop_event=self._stop,
            )

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        """
        Start every thread: notification side first, then peers, then the poll.
        """
        if self._notifier is not None:
            self._notifier.start()
        if self._notify_adapter is not None:
            self._notify_adapter.start()
        for link in self.peer_links:
            link.start()
        self._poller.start()
        self._service.poll()
        logger.info("Alarms runtime started (%d peers)", len(self.peer_links))

    def stop(self) -> None:
        self._stop.set()
        for link in self.peer_links:
            link.stop()
        self._poller.stop()
        if self._notify_adapter is not None:
            self._notify_adapter.stop()

        for link in self.peer_links:
            link.join(timeout=2.0)
        self._poller.join(timeout=2.0)
        if self._notify_adapter is not None:
            self._notify_adapter.join(timeout=2.0)
        if self._notifier is not None:
            self._notifier.stop()
        logger.info("Alarms runtime stopped")

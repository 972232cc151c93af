from __future__ import annotations

import logging
from dataclasses import dataclass, field
from queue import Full, Queue

from bbalarms.domain.events import Broadcast

logger = logging.getLogger(__name__)


@dataclass
class EventBus:
    """
    In-process event bus for alarm broadcasts using a thread-safe queue.

    The bus provides a simple producer/consumer mechanism:
    - The service publishes :class:`~bbalarms.domain.events.AlarmBroadcast`
      from the manager's subscriber callback, and
      :class:`~bbalarms.domain.events.StatusBroadcast` on every poll, via
      :meth:`publish_broadcast`.
    - Consumers (the notification adapter thread) read from :attr:`broadcasts_q`.

    Concurrency Model
    -----------------
    :class:`queue.Queue` is thread-safe. Multiple producers may call
    :meth:`publish_broadcast` concurrently without additional locking.

    Backpressure Policy
    -------------------
    If the queue is full, broadcasts are dropped (best-effort) and counted,
    so notification overload never blocks an alarm transition.

    Attributes
    ----------
    broadcasts_q
        Bounded queue of broadcasts.
    dropped
        Number of broadcasts dropped because the queue was full.
    """

    broadcasts_q: "Queue[Broadcast]" = field(default_factory=lambda: Queue(maxsize=5000))
    dropped: int = 0

    def publish_broadcast(self, msg: Broadcast) -> bool:
        """
        Publish a broadcast to the queue (non-blocking).

        Returns
        -------
        bool
            False if the broadcast was dropped.
        """
        try:
            self.broadcasts_q.put_nowait(msg)
            return True
        except Full:
            self.dropped += 1
            logger.warning("Broadcast queue full, dropped %s for %s", msg.kind, msg.alarm_id or "all alarms")
            return False

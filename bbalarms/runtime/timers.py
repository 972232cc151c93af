"""
Cancellable scheduled callbacks.

Two kinds of timers drive the service:

- :class:`OneShotTimer` for test expiry and buzzer silence expiry;
- :class:`RepeatingTimer` for the periodic "request update" poll.

Callbacks run on the timer's own daemon thread. They must take the alarm
manager's lock only for the duration of their mutation (every manager
operation does that already). A callback that raises is logged and does not
kill a repeating timer.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    """Handle to a scheduled callback."""

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


class OneShotTimer:
    """
    Run a callback once after a delay unless cancelled first.

    Parameters
    ----------
    delay_s
        Delay in seconds.
    callback
        Function to call on expiry.
    name
        Thread name, useful in logs.
    """

    def __init__(self, delay_s: float, callback: Callable[[], None], name: str = "one-shot-timer"):
        self._callback = callback
        self._timer = threading.Timer(delay_s, self._fire)
        self._timer.name = name
        self._timer.daemon = True
        self._fired = threading.Event()

    @classmethod
    def schedule(cls, delay_s: float, callback: Callable[[], None]) -> "OneShotTimer":
        """
        Create and start a timer. Matches the :data:`TimerFactory` signature.
        """
        t = cls(delay_s, callback)
        t.start()
        return t

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()

    @property
    def is_active(self) -> bool:
        return self._timer.is_alive() and not self._fired.is_set()

    def _fire(self) -> None:
        self._fired.set()
        try:
            self._callback()
        except Exception:
            logger.exception("Timer callback %s failed", self._timer.name)


class RepeatingTimer:
    """
    Call a function every `interval_s` seconds until stopped.

    The first call happens one interval after :meth:`start`. Stopping is
    cooperative: the thread waits on an event, so :meth:`stop` takes effect
    immediately even in the middle of an interval.

    Parameters
    ----------
    interval_s
        Interval between calls in seconds.
    callback
        Function to call.
    name
        Thread name.
    stop_event
        Optional shared stop event (e.g. the runtime's).
    """

    def __init__(
        self,
        interval_s: float,
        callback: Callable[[], None],
        name: str = "repeating-timer",
        stop_event: Optional[threading.Event] = None,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._interval_s = interval_s
        self._callback = callback
        self._stop = stop_event or threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def cancel(self) -> None:
        self.stop()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self._callback()
            except Exception:
                logger.exception("Repeating timer %s callback failed", self._thread.name)

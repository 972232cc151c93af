"""
Physical output contracts.

Board wiring is outside the alarm engine; the output coordinator only needs
something it can switch on and off. `MemorySwitch` keeps the state in memory
and is used for the buzzer, pilot light and master interlock when no board is
attached (and in tests).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Protocol

logger = logging.getLogger(__name__)


class SwitchOutput(Protocol):
    """
    Protocol interface for an on/off output device.
    """

    id: str

    @property
    def is_on(self) -> bool:
        ...

    def turn_on(self) -> None:
        ...

    def turn_off(self) -> None:
        ...


@dataclass
class MemorySwitch:
    """
    In-memory on/off output.

    Parameters
    ----------
    id
        Device id (e.g. "buzzer", "pilot", "master").
    listeners
        Callbacks called with the new position whenever it changes.
    """

    id: str
    listeners: List[Callable[[bool], None]] = field(default_factory=list, repr=False)
    _on: bool = field(default=False, init=False)

    @property
    def is_on(self) -> bool:
        return self._on

    def turn_on(self) -> None:
        self._set(True)

    def turn_off(self) -> None:
        self._set(False)

    def _set(self, on: bool) -> None:
        if on == self._on:
            return
        self._on = on
        logger.debug("Output %s turned %s", self.id, "on" if on else "off")
        for cb in list(self.listeners):
            cb(on)

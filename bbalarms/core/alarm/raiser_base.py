"""
Alarm raiser contract.

A raiser is any collaborator that originates alarm state changes: a local
sensor switch, or a remote peer relaying its own alarm state. The manager
holds raisers as a uniform set and never branches on their concrete type.

The contract has two halves:

- registration: on :meth:`AlarmManager.add_raiser` the manager calls
  :meth:`AlarmRaiser.register_alarms`, through which the raiser calls
  :meth:`AlarmManager.register_alarm` for each alarm it owns;
- polling: :meth:`AlarmRaiser.request_update_alarms` asks the raiser to push a
  fresh reading back into the manager. Raisers must not block here; the
  reading arrives later through the manager's update operations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bbalarms.core.alarm.alarm_manager import AlarmManager


@runtime_checkable
class AlarmRaiser(Protocol):
    """
    Protocol interface for alarm sources.

    Methods
    -------
    register_alarms(manager)
        Register every alarm of this raiser with `manager`.
    request_update_alarms()
        Ask the source for its current state; the answer is pushed later.
    """

    def register_alarms(self, manager: "AlarmManager") -> None:
        """
        Register this raiser's alarms.

        Parameters
        ----------
        manager
            Manager to register with. Raisers keep it to push updates.
        """
        ...

    def request_update_alarms(self) -> None:
        """
        Request a fresh status reading (non-blocking).
        """
        ...

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.core.alarm.raisers import LocalAlarmRaiser, MemorySwitchSensor, RemoteAlarmRaiser, SwitchSensor
from bbalarms.core.outputs.output_coordinator import OutputCoordinator
from bbalarms.core.state.alarm_log import AlarmPersistence
from bbalarms.domain.events import AlarmBroadcast, AlarmChangeEvent, StatusBroadcast
from bbalarms.domain.models import AlarmDefinition, StateValue
from bbalarms.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

Raiser = Union[LocalAlarmRaiser, RemoteAlarmRaiser]


def build_raisers(
    definitions: Sequence[AlarmDefinition],
    sensors: Optional[Mapping[str, SwitchSensor]] = None,
    raised_state: Optional[StateValue] = None,
    sender: Optional[str] = None,
) -> List[Raiser]:
    """
    Create one local raiser per local definition and one remote raiser per peer.

    Parameters
    ----------
    definitions
        Enabled alarm definitions.
    sensors
        Switch inputs by alarm id. Local alarms without an entry get an
        in-memory switch on their pin.
    raised_state
        State local alarms raise to (defaults to the scheme's highest).
    sender
        Service name stamped on commands sent to peers.

    Returns
    -------
    list
        Local raisers in definition order, followed by remote raisers in
        order of first appearance of their source.
    """
    sensors = sensors or {}
    local: List[Raiser] = []
    remote: "OrderedDict[str, List[AlarmDefinition]]" = OrderedDict()

    for d in definitions:
        if d.is_local:
            sensor = sensors.get(d.alarm_id) or MemorySwitchSensor(pin=d.pin, noise_threshold=d.noise_threshold)
            local.append(LocalAlarmRaiser(d, sensor, raised_state=raised_state))
        else:
            remote.setdefault(str(d.source), []).append(d)

    remotes: List[Raiser] = [RemoteAlarmRaiser(src, defs, sender=sender) for src, defs in remote.items()]
    return local + remotes


@dataclass
class AlarmsService:
    """
    Wire the alarm manager to its collaborators.

    Responsibilities
    ----------------
    - Subscribe, in this order, the output coordinator, the persistence log
      sink and the broadcast sink to the manager's change events. Outputs
      react first so broadcasts carry the post-change output snapshot.
    - Seed every alarm's "last raised / lowered / disabled" timestamps from
      the persistence log at startup.
    - Poll raisers and broadcast the full status (:meth:`poll`), driven by a
      repeating timer in the runtime.

    Notes
    -----
    Sink failures (storage, queue) are logged and never undo a transition.
    Changes that belong to a test sequence are broadcast but not logged.

    Parameters
    ----------
    manager
        Alarm manager.
    coordinator
        Output coordinator for buzzer, pilot light and master.
    persistence
        Definitions + state-change log.
    bus
        Event bus for broadcasts; None disables broadcasting.
    clock
        Source of "now" for status broadcasts.
    """

    manager: AlarmManager
    coordinator: OutputCoordinator
    persistence: AlarmPersistence
    bus: Optional[EventBus] = None
    clock: Callable[[], datetime] = datetime.now

    def attach(self) -> None:
        self.coordinator.attach()
        self.manager.subscribe(self.log_change)
        self.manager.subscribe(self.broadcast_change)

    def register_raisers(self, raisers: Sequence[object]) -> int:
        """
        Add raisers to the manager, then seed timestamps from the log.
        """
        added = self.manager.add_raisers(raisers)
        self.seed_timestamps()
        logger.info("Registered %d raisers, %d alarms", added, len(self.manager.alarms))
        return added

    def seed_timestamps(self) -> None:
        for alarm in self.manager.alarms:
            try:
                alarm.last_raised = self.persistence.last_raised(alarm.id)
                alarm.last_lowered = self.persistence.last_lowered(alarm.id)
                alarm.last_disabled = self.persistence.last_disabled(alarm.id)
            except Exception:
                logger.exception("Could not read alarm history for %s", alarm.id)

    # --- Sinks ---
    def log_change(self, ev: AlarmChangeEvent) -> None:
        if ev.testing:
            return
        try:
            self.persistence.log_change(ev.alarm_id, ev.state, ev.message, ev.code, ev.comment)
        except Exception:
            logger.exception("Failed to log state change of %s", ev.alarm_id)

    def broadcast_change(self, ev: AlarmChangeEvent) -> None:
        if self.bus is None:
            return
        self.bus.publish_broadcast(AlarmBroadcast(event=ev, outputs=self.coordinator.snapshot()))

    # --- Polling ---
    def poll(self) -> None:
        """
        Ask every raiser for a fresh reading, then broadcast the current status.

        Local raisers answer immediately; peers answer over their link, so
        their replies show up in the next status.
        """
        logger.debug("Requesting alarm updates")
        self.manager.request_update_alarms()
        self.broadcast_status()

    def broadcast_status(self) -> Optional[StatusBroadcast]:
        if self.bus is None:
            return None
        msg = StatusBroadcast(status=self.status(), timestamp=self.clock())
        self.bus.publish_broadcast(msg)
        return msg

    # --- Status ---
    def status(self) -> Dict[str, Any]:
        """
        Status snapshot in the same shape peers send for ``alarm-status``.
        """
        snaps = self.manager.snapshots()
        return {
            "type": "alarm_status",
            "alarm_states": {s.id: s.state.value for s in snaps},
            "alarm_messages": {s.id: s.message for s in snaps},
            "alarm_codes": {s.id: s.code for s in snaps},
            "testing": self.manager.is_testing,
            "current_test": self.manager.current_test.value,
            **self.coordinator.snapshot().to_dict(),
        }

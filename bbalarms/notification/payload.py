from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List

from bbalarms.core.alarm.alarm import AlarmSnapshot
from bbalarms.domain.events import AlarmBroadcast, StatusBroadcast
from bbalarms.domain.models import SeverityScheme


def alarm_totals(alarms: Iterable[AlarmSnapshot], scheme: SeverityScheme) -> Dict[str, Any]:
    """
    Counters over the current alarm set.

    Returns
    -------
    dict
        ``alarms_total``, ``alarms_raised``, ``alarms_disabled``,
        ``alarms_testing``, ``raised_ids`` (most severe first) and
        ``state_counts``.
    """
    snaps = list(alarms)
    by_state = Counter(s.state.value for s in snaps)
    raised: List[AlarmSnapshot] = sorted(
        (s for s in snaps if scheme.is_raised(s.state)),
        key=lambda s: -scheme.severity(s.state),
    )

    return {
        "alarms_total": len(snaps),
        "alarms_raised": len(raised),
        "alarms_disabled": sum(1 for s in snaps if scheme.is_disabled(s.state)),
        "alarms_testing": sum(1 for s in snaps if s.testing),
        "raised_ids": [s.id for s in raised],
        "state_counts": {str(k): int(v) for k, v in by_state.items()},
    }


def build_alarm_webhook_payload(
    broadcast: AlarmBroadcast,
    alarms: Iterable[AlarmSnapshot],
    scheme: SeverityScheme,
) -> Dict[str, Any]:
    """
    Build a webhook payload for an alarm broadcast plus current totals.

    The payload includes:
    - "alert": the broadcast fields (alarm id/state/message/code, testing
      flag and buzzer/pilot/master positions)
    - "totals": counters computed from the current alarm snapshots

    Parameters
    ----------
    broadcast
        Broadcast that triggered the webhook.
    alarms
        Snapshots of every managed alarm, taken when the payload is built.
    scheme
        Severity scheme used to classify states.

    Returns
    -------
    dict
        Payload with keys "type", "alert" and "totals".
    """
    return {
        "type": broadcast.kind,
        "alert": broadcast.to_payload(),
        "totals": alarm_totals(alarms, scheme),
    }


def build_status_webhook_payload(
    broadcast: StatusBroadcast,
    alarms: Iterable[AlarmSnapshot],
    scheme: SeverityScheme,
) -> Dict[str, Any]:
    """
    Webhook payload for a periodic status: "type", "status" and "totals".
    """
    return {
        "type": broadcast.kind,
        "status": broadcast.to_payload(),
        "totals": alarm_totals(alarms, scheme),
    }

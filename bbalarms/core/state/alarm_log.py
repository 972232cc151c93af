from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from bbalarms.domain.errors import AlarmNotFoundError
from bbalarms.domain.models import NO_CODE, SEVERITY_SCHEME, AlarmDefinition, SeverityScheme, StateValue
from bbalarms.transport.ndjson import iter_json_objects

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlarmLogRecord:
    """
    One row of the append-only alarm state-change log.

    Parameters
    ----------
    record_id
        Monotonic id of the record.
    alarm_id
        Alarm the change belongs to.
    state
        Name of the new state.
    logged_at
        When the change was logged.
    message
        Alarm message, if any.
    code
        Alarm code.
    comment
        Audit comment, if any.
    """

    record_id: int
    alarm_id: str
    state: str
    logged_at: datetime
    message: Optional[str] = None
    code: int = NO_CODE
    comment: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "alarm_id": self.alarm_id,
            "state": self.state,
            "logged_at": self.logged_at.isoformat(),
            "message": self.message,
            "code": self.code,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, obj: dict) -> "AlarmLogRecord":
        return cls(
            record_id=int(obj["record_id"]),
            alarm_id=str(obj["alarm_id"]),
            state=str(obj["state"]),
            logged_at=datetime.fromisoformat(str(obj["logged_at"])),
            message=obj.get("message"),
            code=int(obj.get("code", NO_CODE)),
            comment=obj.get("comment"),
        )


class AlarmPersistence(Protocol):
    """
    Contract the alarm service needs from its storage.

    Methods
    -------
    load_alarm_definitions()
        Alarm definitions to register at startup (enabled ones only).
    log_change(alarm_id, state, message, code, comment)
        Append a state change and return its record id.
    last_raised(alarm_id), last_lowered(alarm_id), last_disabled(alarm_id)
        Timestamp of the latest logged change into that bucket, or None.
    """

    def load_alarm_definitions(self) -> List[AlarmDefinition]:
        ...

    def log_change(
        self,
        alarm_id: str,
        state: StateValue,
        message: Optional[str] = None,
        code: int = NO_CODE,
        comment: Optional[str] = None,
    ) -> int:
        ...

    def last_raised(self, alarm_id: str) -> Optional[datetime]:
        ...

    def last_lowered(self, alarm_id: str) -> Optional[datetime]:
        ...

    def last_disabled(self, alarm_id: str) -> Optional[datetime]:
        ...

BUCKET_RAISED = "raised"
BUCKET_LOWERED = "lowered"
BUCKET_DISABLED = "disabled"


@dataclass
class MemoryAlarmLog:
    """
    In-memory persistence for alarm definitions and the state-change log.

    Only the latest `history_size` records are kept. The "last raised /
    lowered / disabled" answers come from a per-alarm index updated on every
    append, so they outlive the records they were taken from.

    Notes
    -----
    - All access is guarded by a lock; the log may be written from the
      manager's subscriber thread while commands read it.
    - Logging a change for an alarm without a definition is rejected, the
      same way a foreign key would reject it.

    Parameters
    ----------
    definitions
        Alarm definitions known to the store.
    scheme
        Severity scheme used to bucket logged states.
    clock
        Source of "now" for new records.
    history_size
        Maximum number of records kept in memory.
    """

    definitions: Sequence[AlarmDefinition] = field(default_factory=list)
    scheme: SeverityScheme = SEVERITY_SCHEME
    clock: Callable[[], datetime] = datetime.now
    history_size: int = 1000

    _history: Deque[AlarmLogRecord] = field(default_factory=deque, init=False, repr=False)
    _latest: Dict[Tuple[str, str], datetime] = field(default_factory=dict, init=False, repr=False)
    _last_id: int = field(default=0, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._history = deque(maxlen=self.history_size)

    @property
    def records(self) -> List[AlarmLogRecord]:
        """Records still held in memory, oldest first."""
        with self._lock:
            return list(self._history)

    def load_alarm_definitions(self) -> List[AlarmDefinition]:
        with self._lock:
            return [d for d in self.definitions if d.enabled]

    def get_definition(self, alarm_id: str) -> Optional[AlarmDefinition]:
        with self._lock:
            for d in self.definitions:
                if d.alarm_id == alarm_id:
                    return d
            return None

    def log_change(
        self,
        alarm_id: str,
        state: StateValue,
        message: Optional[str] = None,
        code: int = NO_CODE,
        comment: Optional[str] = None,
    ) -> int:
        """
        Append a state change.

        Returns
        -------
        int
            Id of the new record.

        Raises
        ------
        AlarmNotFoundError
            If no definition exists for `alarm_id`.
        """
        with self._lock:
            if self.get_definition(alarm_id) is None:
                raise AlarmNotFoundError(alarm_id)
            record = AlarmLogRecord(
                record_id=self._last_id + 1,
                alarm_id=alarm_id,
                state=self.scheme.parse(state).value,
                logged_at=self.clock(),
                message=message,
                code=code,
                comment=comment,
            )
            self._append(record)
            return record.record_id

    def records_for(self, alarm_id: str) -> List[AlarmLogRecord]:
        with self._lock:
            return [r for r in self._history if r.alarm_id == alarm_id]

    def last_raised(self, alarm_id: str) -> Optional[datetime]:
        return self._last(alarm_id, BUCKET_RAISED)

    def last_lowered(self, alarm_id: str) -> Optional[datetime]:
        return self._last(alarm_id, BUCKET_LOWERED)

    def last_disabled(self, alarm_id: str) -> Optional[datetime]:
        return self._last(alarm_id, BUCKET_DISABLED)

    def clear(self) -> None:
        """
        Clear the records and the last-* index. Definitions are kept and
        record ids keep increasing.
        """
        with self._lock:
            self._history.clear()
            self._latest.clear()

    def _append(self, record: AlarmLogRecord) -> None:
        self._remember(record)

    def _remember(self, record: AlarmLogRecord) -> None:
        self._history.append(record)
        self._last_id = max(self._last_id, record.record_id)
        bucket = self._bucket(record.state)
        if bucket is not None:
            self._latest[(record.alarm_id, bucket)] = record.logged_at

    def _bucket(self, state_name: str) -> Optional[str]:
        try:
            state = self.scheme.parse(state_name)
        except ValueError:
            return None
        if self.scheme.is_raised(state):
            return BUCKET_RAISED
        if self.scheme.is_disabled(state):
            return BUCKET_DISABLED
        return BUCKET_LOWERED

    def _last(self, alarm_id: str, bucket: str) -> Optional[datetime]:
        with self._lock:
            return self._latest.get((alarm_id, bucket))


class NdjsonAlarmLog(MemoryAlarmLog):
    """
    Alarm log that also appends every record as one JSON line to a file.

    Existing records are loaded from the file on construction so the
    "last raised / lowered / disabled" queries survive restarts. Malformed
    lines are logged and skipped.

    Parameters
    ----------
    path
        Log file path; created on first write.
    definitions, scheme, clock, history_size
        See :class:`MemoryAlarmLog`. Older records are only in the file once
        the in-memory history is full.
    """

    def __init__(
        self,
        path: str | Path,
        definitions: Sequence[AlarmDefinition] = (),
        scheme: SeverityScheme = SEVERITY_SCHEME,
        clock: Callable[[], datetime] = datetime.now,
        history_size: int = 1000,
    ):
        super().__init__(definitions=list(definitions), scheme=scheme, clock=clock, history_size=history_size)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        loaded = 0
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                try:
                    for obj in iter_json_objects(line):
                        self._remember(AlarmLogRecord.from_dict(obj))
                        loaded += 1
                except (ValueError, KeyError) as e:
                    logger.warning("Skipping bad alarm log line in %s: %r", self.path, e)
        logger.info("Loaded %d alarm log records from %s", loaded, self.path)

    def _append(self, record: AlarmLogRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict()) + "\n")
        super()._append(record)

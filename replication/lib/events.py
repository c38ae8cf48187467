"""Replication events and the primary's notification log.

Every DDL or DML operation on the primary appends one typed event to an
ordered log. Event ids are the replication watermark: a dump covers the
events strictly after its starting watermark, and the reconciler applies
them on the replica in id order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from replication.lib.errors import InconsistentReplicationStateError
from replication.lib.model import Table, TableKind, normalize_name

logger = logging.getLogger(__name__)

__all__ = ["EventLog", "EventType", "ReplicationEvent"]


class EventType(Enum):
    """Kinds of replicated operations."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_PARTITION = "add_partition"
    DROP_PARTITION = "drop_partition"
    ALTER_TABLE_LOCATION = "alter_table_location"
    ALTER_PARTITION_LOCATION = "alter_partition_location"
    INSERT = "insert"

    @property
    def is_location_affecting(self) -> bool:
        return self is not EventType.INSERT

    @property
    def is_partition_level(self) -> bool:
        return self in (
            EventType.ADD_PARTITION,
            EventType.DROP_PARTITION,
            EventType.ALTER_PARTITION_LOCATION,
        )


@dataclass
class ReplicationEvent:
    """A single entry of the notification log.

    Fields beyond the common header are populated per event type:

    - CREATE_TABLE: ``table`` (definition and location, partitions omitted)
    - ADD_PARTITION: ``partition_values``, ``table_location`` and, when the
      partition was given an explicit location, ``location``
    - ALTER_TABLE_LOCATION: ``location``
    - ALTER_PARTITION_LOCATION: ``partition_values``, ``location``
    - DROP_PARTITION: ``partition_values``
    - INSERT: ``partition_values`` for partitioned tables
    """

    event_id: int
    event_type: EventType
    db_name: str
    table_name: str
    table_kind: TableKind
    table: Optional[Table] = None
    partition_values: Optional[List[str]] = None
    location: Optional[str] = None
    table_location: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.db_name = normalize_name(self.db_name)
        self.table_name = normalize_name(self.table_name)
        self.event_type = EventType(self.event_type)
        self.table_kind = TableKind.normalize(self.table_kind)

    @property
    def is_external(self) -> bool:
        return self.table_kind is TableKind.EXTERNAL

    def _malformed(self, reason: str) -> InconsistentReplicationStateError:
        return InconsistentReplicationStateError(
            f"Malformed {self.event_type.value} event: {reason}",
            database=self.db_name,
            table=self.table_name,
            event_id=self.event_id,
            event_type=self.event_type.value,
        )

    def validate(self) -> None:
        """Check that the fields required by the event type are present."""
        if self.event_type is EventType.CREATE_TABLE:
            if self.table is None:
                raise self._malformed("missing table definition")
            if self.table.name != self.table_name:
                raise self._malformed(
                    f"table definition is for '{self.table.name}'"
                )
        if self.event_type.is_partition_level and not self.partition_values:
            raise self._malformed("missing partition values")
        if self.event_type is EventType.ADD_PARTITION:
            if not self.location and not self.table_location:
                raise self._malformed("missing partition and table location")
        if self.event_type in (
            EventType.ALTER_TABLE_LOCATION,
            EventType.ALTER_PARTITION_LOCATION,
        ) and not self.location:
            raise self._malformed("missing new location")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "db_name": self.db_name,
            "table_name": self.table_name,
            "table_kind": self.table_kind.value,
            "table": self.table.to_dict() if self.table else None,
            "partition_values": self.partition_values,
            "location": self.location,
            "table_location": self.table_location,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplicationEvent":
        table = data.get("table")
        values = data.get("partition_values")
        return cls(
            event_id=int(data["event_id"]),
            event_type=EventType(data["event_type"]),
            db_name=data["db_name"],
            table_name=data["table_name"],
            table_kind=TableKind.normalize(data["table_kind"]),
            table=Table.from_dict(table) if table else None,
            partition_values=[str(v) for v in values] if values else None,
            location=data.get("location"),
            table_location=data.get("table_location"),
            extra=dict(data.get("extra") or {}),
        )


class EventLog:
    """Append-only, id-ordered notification log."""

    def __init__(self, events: Optional[List[ReplicationEvent]] = None) -> None:
        self._events: List[ReplicationEvent] = list(events or [])

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ReplicationEvent]:
        return iter(self._events)

    @property
    def last_event_id(self) -> int:
        return self._events[-1].event_id if self._events else 0

    def next_event_id(self) -> int:
        return self.last_event_id + 1

    def append(self, event: ReplicationEvent) -> ReplicationEvent:
        if event.event_id <= self.last_event_id:
            raise ValueError(
                f"Event id {event.event_id} is not after {self.last_event_id}"
            )
        self._events.append(event)
        logger.debug(
            "Logged event %d %s on %s.%s",
            event.event_id,
            event.event_type.value,
            event.db_name,
            event.table_name,
        )
        return event

    def events_between(
        self,
        after: int,
        upto: Optional[int] = None,
        db_name: Optional[str] = None,
    ) -> List[ReplicationEvent]:
        """Events with ``after < event_id <= upto``, optionally for one database."""
        db = normalize_name(db_name) if db_name else None
        return [
            e
            for e in self._events
            if e.event_id > after
            and (upto is None or e.event_id <= upto)
            and (db is None or e.db_name == db)
        ]

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._events]

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]]) -> "EventLog":
        return cls([ReplicationEvent.from_dict(e) for e in data])

"""Load-side reconciliation of replica metadata.

Applies a dump's events to the replica metastore in watermark order and
then confirms external table locations against the dump's manifest.

Per replicated object the reconciler moves between three states:

    ABSENT -> PRESENT -> (unchanged | LOCATION_UPDATED) -> ABSENT on drop

Every EXTERNAL location written to the replica goes through ``rebase``.
Drops remove metadata only: the data directory at the (rebased) location
is never touched, and no data is ever copied.

The reconciler does not manage transactions itself; the coordinator runs
it inside one metastore transaction so any failure rolls back the whole
batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from replication.lib.errors import InconsistentReplicationStateError
from replication.lib.events import EventType, ReplicationEvent
from replication.lib.manifest import ManifestEntry
from replication.lib.metastore import Metastore
from replication.lib.model import (
    Partition,
    Table,
    TableKind,
    default_partition_location,
    normalize_name,
)
from replication.lib.rebase import rebase

logger = logging.getLogger(__name__)

__all__ = ["MetadataReconciler", "ObjectState", "ReconcileResult"]


class ObjectState(Enum):
    """Replica state of a table or partition."""

    ABSENT = "absent"
    PRESENT = "present"
    LOCATION_UPDATED = "location_updated"


@dataclass
class ReconcileResult:
    """Counters for one reconciliation batch."""

    applied: int = 0
    skipped: int = 0
    noops: int = 0
    locations_confirmed: int = 0
    locations_realigned: int = 0
    last_event_id: Optional[int] = None
    transitions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "applied": self.applied,
            "skipped": self.skipped,
            "noops": self.noops,
            "locations_confirmed": self.locations_confirmed,
            "locations_realigned": self.locations_realigned,
            "last_event_id": self.last_event_id,
        }


class MetadataReconciler:
    """Applies replication events to one replica database.

    Args:
        metastore: Replica metastore
        target_db: Replica database name (may differ from the primary's)
        external_base: Canonical replica base directory for external
            locations, or None to keep primary locations
    """

    def __init__(
        self,
        metastore: Metastore,
        target_db: str,
        external_base: Optional[str] = None,
    ) -> None:
        self.metastore = metastore
        self.target_db = normalize_name(target_db)
        self.external_base = external_base or None
        self._handlers: Dict[EventType, Callable[[ReplicationEvent, ReconcileResult], None]] = {
            EventType.CREATE_TABLE: self._create_table,
            EventType.DROP_TABLE: self._drop_table,
            EventType.ADD_PARTITION: self._add_partition,
            EventType.DROP_PARTITION: self._drop_partition,
            EventType.ALTER_TABLE_LOCATION: self._alter_table_location,
            EventType.ALTER_PARTITION_LOCATION: self._alter_partition_location,
            EventType.INSERT: self._insert,
        }
        missing = set(EventType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No reconciler handler for {sorted(m.value for m in missing)}")

    # Location helpers

    def replica_location(self, kind: TableKind, source_location: Optional[str]) -> Optional[str]:
        """Where a table or partition of ``kind`` lives on the replica."""
        if kind is TableKind.EXTERNAL:
            if not source_location:
                return None
            return rebase(source_location, self.external_base)
        if kind is TableKind.MANAGED:
            return None
        raise ValueError(f"Unknown table kind {kind!r}")

    def table_state(self, table_name: str) -> ObjectState:
        if self.metastore.table_exists(self.target_db, table_name):
            return ObjectState.PRESENT
        return ObjectState.ABSENT

    # Batch application

    def apply(
        self,
        events: Iterable[ReplicationEvent],
        after_watermark: Optional[int] = None,
        result: Optional[ReconcileResult] = None,
    ) -> ReconcileResult:
        """Apply events in order, skipping those at or below ``after_watermark``.

        Raises:
            InconsistentReplicationStateError: malformed or out-of-order
                event, or an event for an object in an unexpected state
        """
        result = result or ReconcileResult()
        previous: Optional[int] = None

        for event in events:
            if previous is not None and event.event_id < previous:
                raise InconsistentReplicationStateError(
                    f"Event {event.event_id} arrived after event {previous}",
                    database=self.target_db,
                    table=event.table_name,
                    event_id=event.event_id,
                    event_type=event.event_type.value,
                )
            previous = event.event_id

            if after_watermark is not None and event.event_id <= after_watermark:
                result.skipped += 1
                continue

            event.validate()
            self._handlers[event.event_type](event, result)
            result.applied += 1
            result.last_event_id = event.event_id

        return result

    def _inconsistent(self, event: ReplicationEvent, reason: str) -> InconsistentReplicationStateError:
        return InconsistentReplicationStateError(
            reason,
            database=self.target_db,
            table=event.table_name,
            event_id=event.event_id,
            event_type=event.event_type.value,
        )

    def _require_table(self, event: ReplicationEvent) -> Table:
        if self.table_state(event.table_name) is ObjectState.ABSENT:
            raise self._inconsistent(event, f"Table '{event.table_name}' is not present on the replica")
        table = self.metastore.get_table(self.target_db, event.table_name)
        if table.kind is not event.table_kind:
            raise self._inconsistent(
                event,
                f"Replica table is {table.kind.value}, event is for a {event.table_kind.value} table",
            )
        return table

    def _require_partition(self, event: ReplicationEvent, table: Table) -> Partition:
        partition = table.get_partition(event.partition_values or [])
        if partition is None:
            raise self._inconsistent(
                event,
                f"Partition {table.partition_spec(event.partition_values or [])} is not present on the replica",
            )
        return partition

    def _transition(self, result: ReconcileResult, event: ReplicationEvent, what: str, state: ObjectState) -> None:
        message = f"{event.event_id}:{what}->{state.value}"
        result.transitions.append(message)
        logger.debug("Event %d %s: %s -> %s", event.event_id, event.event_type.value, what, state.value)

    # Handlers

    def _create_table(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        if self.table_state(event.table_name) is ObjectState.PRESENT:
            result.noops += 1
            logger.debug("Table %s already present; create is a no-op", event.table_name)
            return

        source = event.table
        if source is None:
            raise self._inconsistent(event, "Create event carries no table definition")
        table = source.copy()
        table.location = self.replica_location(source.kind, source.location)
        table.partitions = {}
        for part in source.sorted_partitions():
            table.partitions[part.key] = Partition(
                values=list(part.values),
                location=self.replica_location(source.kind, part.location),
                parameters=dict(part.parameters),
            )

        self.metastore.put_table(self.target_db, table)
        self._transition(result, event, table.name, ObjectState.PRESENT)

    def _drop_table(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        self._require_table(event)
        self.metastore.delete_table(self.target_db, event.table_name)
        self._transition(result, event, event.table_name, ObjectState.ABSENT)

    def _add_partition(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        table = self._require_table(event)
        values = event.partition_values or []
        if table.get_partition(values) is not None:
            result.noops += 1
            logger.debug("Partition %s of %s already present", values, table.name)
            return

        source_location = event.location
        if not source_location and event.table_location:
            source_location = default_partition_location(
                event.table_location, table.partition_keys, values
            )
        partition = Partition(
            values=list(values),
            location=self.replica_location(table.kind, source_location),
        )
        self.metastore.put_partition(self.target_db, table.name, partition)
        self._transition(result, event, f"{table.name}/{table.partition_spec(values)}", ObjectState.PRESENT)

    def _drop_partition(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        table = self._require_table(event)
        self._require_partition(event, table)
        self.metastore.delete_partition(self.target_db, table.name, event.partition_values or [])
        self._transition(
            result, event, f"{table.name}/{table.partition_spec(event.partition_values or [])}", ObjectState.ABSENT
        )

    def _alter_table_location(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        table = self._require_table(event)
        table.location = self.replica_location(table.kind, event.location)
        self.metastore.put_table(self.target_db, table)
        self._transition(result, event, table.name, ObjectState.LOCATION_UPDATED)

    def _alter_partition_location(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        table = self._require_table(event)
        partition = self._require_partition(event, table)
        partition.location = self.replica_location(table.kind, event.location)
        self.metastore.put_partition(self.target_db, table.name, partition)
        self._transition(
            result, event, f"{table.name}/{table.partition_spec(partition.values)}", ObjectState.LOCATION_UPDATED
        )

    def _insert(self, event: ReplicationEvent, result: ReconcileResult) -> None:
        table = self._require_table(event)
        if event.partition_values:
            self._require_partition(event, table)

    # Manifest confirmation

    def confirm_locations(
        self,
        entries: Iterable[ManifestEntry],
        result: Optional[ReconcileResult] = None,
    ) -> ReconcileResult:
        """Check each manifest table against the replica, realigning drift.

        Raises:
            InconsistentReplicationStateError: a listed table is missing on
                the replica or is not EXTERNAL there
        """
        result = result or ReconcileResult()

        for entry in entries:
            if not self.metastore.table_exists(self.target_db, entry.table_name):
                raise InconsistentReplicationStateError(
                    f"Manifest lists table '{entry.table_name}' which is not present on the replica",
                    database=self.target_db,
                    table=entry.table_name,
                    suggestion=(
                        "The replica is missing external tables; it may have been "
                        "bootstrapped with external table replication disabled. "
                        "Re-bootstrap the replica with it enabled."
                    ),
                )
            table = self.metastore.get_table(self.target_db, entry.table_name)
            if table.kind is not TableKind.EXTERNAL:
                raise InconsistentReplicationStateError(
                    f"Manifest lists table '{entry.table_name}' which is {table.kind.value} on the replica",
                    database=self.target_db,
                    table=entry.table_name,
                )

            expected = rebase(entry.location, self.external_base)
            if table.location == expected:
                result.locations_confirmed += 1
                continue

            logger.warning(
                "Realigning %s.%s location %s -> %s",
                self.target_db,
                table.name,
                table.location,
                expected,
            )
            table.location = expected
            self.metastore.put_table(self.target_db, table)
            result.locations_realigned += 1
            result.transitions.append(f"manifest:{table.name}->{ObjectState.LOCATION_UPDATED.value}")

        return result

"""Dump/load cycle coordination.

A dump captures one database of the primary into a fresh dump directory:

- bootstrap (no starting watermark): a snapshot of every table and
  partition, expressed as CREATE_TABLE and ADD_PARTITION events stamped
  with the snapshot watermark
- incremental: the notification log events after the starting watermark

A load replays a dump into a replica database and, when the dump carries an
external table manifest, confirms every listed location. The replica's
replication watermark only moves when the whole load succeeds.

Example:
    >>> coordinator = ReplicationCoordinator(primary, replica, dump_base="/repl/dumps")
    >>> options = ReplicationOptions(include_external_tables=True,
    ...                              external_table_base_dir="/replica_external_base")
    >>> dump = coordinator.dump("sales", options=options)
    >>> coordinator.load("sales_replica", dump.dump_location, options=options)
    42
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from replication.lib.config import ReplicationOptions
from replication.lib.dump import (
    DumpMetadata,
    DumpType,
    read_dump_metadata,
    read_events,
    write_dump_metadata,
    write_events,
)
from replication.lib.errors import InconsistentReplicationStateError, ObjectNotFoundError
from replication.lib.events import EventType, ReplicationEvent
from replication.lib.locks import DatabaseLocks, file_lock, lock_key
from replication.lib.logging import replication_logger
from replication.lib.manifest import (
    DumpSnapshot,
    IncrementalScope,
    manifest_path,
    read_manifest,
    write_manifest,
)
from replication.lib.metastore import Metastore
from replication.lib.model import Database, Table, TableKind, normalize_name
from replication.lib.observability import CycleMetrics
from replication.lib.reconciler import MetadataReconciler, ReconcileResult
from replication.lib.storage import StorageBackend, get_storage
from replication.lib import watermark as checkpoints

logger = logging.getLogger(__name__)

__all__ = ["CycleResult", "DumpResult", "LoadResult", "ReplicationCoordinator"]


@dataclass
class DumpResult:
    """Where a dump was written and what it covers."""

    dump_location: str
    last_replication_id: int
    bootstrap: bool
    manifest_path: Optional[str]
    event_count: int
    external_tables: List[str] = field(default_factory=list)


@dataclass
class LoadResult:
    """Outcome of a load."""

    target_db: str
    dump_location: str
    watermark: int
    reconcile: ReconcileResult
    manifest_found: bool = False
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CycleResult:
    """A dump followed by its load."""

    dump: DumpResult
    load: LoadResult


class ReplicationCoordinator:
    """Runs dumps from a primary metastore and loads into a replica.

    Args:
        primary: Metastore dumps read from
        replica: Metastore loads write to
        dump_base: Directory (path or URI) new dump directories are created in
        storage: Filesystem for dump artifacts; detected from the location
            when omitted
        lock_dir: Local directory for cross-process lockfiles; in-process
            locks only when omitted
        lock_timeout: Seconds to wait for a database lock
        state_dir: Directory of watermark checkpoints used by run_cycle
    """

    def __init__(
        self,
        primary: Metastore,
        replica: Metastore,
        dump_base: str,
        storage: Optional[StorageBackend] = None,
        lock_dir: Optional[str] = None,
        lock_timeout: float = 30.0,
        state_dir: Optional[str] = None,
    ) -> None:
        self.primary = primary
        self.replica = replica
        self.dump_base = dump_base if "://" in dump_base else os.path.abspath(dump_base)
        self._storage = storage
        self.lock_dir = lock_dir
        self.lock_timeout = lock_timeout
        self.state_dir = state_dir
        self.locks = DatabaseLocks(timeout=lock_timeout)

    def _storage_for(self, location: str) -> StorageBackend:
        return self._storage or get_storage(location)

    @contextmanager
    def _hold(self, operation: str, db_name: str) -> Iterator[None]:
        with ExitStack() as stack:
            stack.enter_context(self.locks.hold(operation, db_name))
            if self.lock_dir:
                name = f".{lock_key(operation, db_name).replace(':', '_')}.lock"
                stack.enter_context(file_lock(self.lock_dir, name, timeout=self.lock_timeout))
            yield

    # Dump

    def dump(
        self,
        db_name: str,
        from_watermark: Optional[int] = None,
        options: Optional[ReplicationOptions] = None,
    ) -> DumpResult:
        """Dump a primary database.

        Args:
            db_name: Primary database
            from_watermark: Last replication id already on the replica;
                None requests a bootstrap dump
            options: Dump options

        Raises:
            ObjectNotFoundError: the database does not exist on the primary
            InconsistentReplicationStateError: ``from_watermark`` is ahead of
                the primary's notification log
            StorageWriteError: a dump artifact could not be written
        """
        options = options or ReplicationOptions()
        db_name = normalize_name(db_name)
        bootstrap = from_watermark is None
        metrics = CycleMetrics("dump", db_name)
        log = replication_logger(__name__, db=db_name, phase="dump")

        with self._hold("dump", db_name):
            with metrics.time_phase("snapshot"):
                # Snapshot and log head are read under one metastore lock.
                with self.primary.consistent_read():
                    database = self.primary.snapshot(db_name)
                    head = self.primary.notifications.last_event_id
                    if bootstrap:
                        events = self._snapshot_events(database, head)
                    else:
                        if from_watermark > head:
                            raise InconsistentReplicationStateError(
                                f"Watermark {from_watermark} is ahead of the primary's last event {head}",
                                database=db_name,
                            )
                        events = self.primary.notifications.events_between(
                            from_watermark, head, db_name=db_name
                        )

            # Manifest scope follows every captured event, filtered or not
            captured = events
            events = self._filter_events(events, options)
            dump_location = f"{self.dump_base.rstrip('/')}/{db_name}_{head}_{uuid.uuid4().hex[:8]}"
            storage = self._storage_for(dump_location)
            log = log.bind(dump_location=dump_location)

            with metrics.time_phase("events"):
                write_events(storage, dump_location, events)

            written_path: Optional[str] = None
            external_names: List[str] = []
            if options.include_external_tables:
                with metrics.time_phase("manifest"):
                    snapshot = DumpSnapshot(
                        db_name=db_name,
                        tables=self._manifest_tables(database, captured, bootstrap, options),
                        bootstrap=bootstrap,
                    )
                    written = write_manifest(
                        snapshot, manifest_path(dump_location, db_name, bootstrap), storage
                    )
                if written.written:
                    written_path = written.path
                    external_names = written.table_names

            metadata = DumpMetadata(
                db_name=db_name,
                dump_type=DumpType.BOOTSTRAP if bootstrap else DumpType.INCREMENTAL,
                last_replication_id=head,
                from_watermark=from_watermark,
                event_count=len(events),
                include_external_tables=options.include_external_tables,
                metadata_only=options.metadata_only,
                manifest_written=written_path is not None,
                external_tables=external_names,
            )
            write_dump_metadata(storage, dump_location, metadata)

        metrics.record("events_dumped", len(events), unit="events")
        metrics.record("manifest_entries", len(external_names), unit="tables")
        log.metric("events_dumped", len(events), unit="events")
        log.info(
            "%s dump of %s complete at watermark %d",
            metadata.dump_type.value.capitalize(),
            db_name,
            head,
            extra=metrics.to_log_dict(),
        )
        return DumpResult(
            dump_location=dump_location,
            last_replication_id=head,
            bootstrap=bootstrap,
            manifest_path=written_path,
            event_count=len(events),
            external_tables=external_names,
        )

    def _snapshot_events(self, database: Database, watermark: int) -> List[ReplicationEvent]:
        events: List[ReplicationEvent] = []
        for name in sorted(database.tables):
            table = database.tables[name]
            events.append(
                ReplicationEvent(
                    event_id=watermark,
                    event_type=EventType.CREATE_TABLE,
                    db_name=database.name,
                    table_name=table.name,
                    table_kind=table.kind,
                    table=table.copy(with_partitions=False),
                )
            )
            for partition in table.sorted_partitions():
                events.append(
                    ReplicationEvent(
                        event_id=watermark,
                        event_type=EventType.ADD_PARTITION,
                        db_name=database.name,
                        table_name=table.name,
                        table_kind=table.kind,
                        partition_values=list(partition.values),
                        location=partition.location,
                        table_location=table.location,
                    )
                )
        return events

    def _filter_events(
        self, events: List[ReplicationEvent], options: ReplicationOptions
    ) -> List[ReplicationEvent]:
        kept = []
        for event in events:
            if event.table_kind is TableKind.EXTERNAL and not options.include_external_tables:
                continue
            if event.event_type is EventType.INSERT and options.metadata_only:
                continue
            kept.append(event)
        dropped = len(events) - len(kept)
        if dropped:
            logger.debug("Filtered %d events out of the dump", dropped)
        return kept

    def _manifest_tables(
        self,
        database: Database,
        events: List[ReplicationEvent],
        bootstrap: bool,
        options: ReplicationOptions,
    ) -> List[Table]:
        tables = [database.tables[name] for name in sorted(database.tables)]
        if bootstrap or options.incremental_scope is IncrementalScope.ALL_EXTERNAL:
            return tables
        if options.incremental_scope is IncrementalScope.TOUCHED:
            touched: Set[str] = {e.table_name for e in events}
            return [t for t in tables if t.name in touched]
        raise ValueError(f"Unknown incremental scope {options.incremental_scope!r}")

    # Load

    def load(
        self,
        target_db: str,
        dump_location: str,
        options: Optional[ReplicationOptions] = None,
    ) -> int:
        """Load a dump into a replica database.

        Returns:
            The replica's replication watermark after the load

        Raises:
            StorageReadError: the dump is missing or incomplete
            InconsistentReplicationStateError: the dump does not follow on
                from the replica's state, or an event cannot be applied
            ManifestFormatError: the manifest is malformed
        """
        return self.load_dump(target_db, dump_location, options).watermark

    def load_dump(
        self,
        target_db: str,
        dump_location: str,
        options: Optional[ReplicationOptions] = None,
    ) -> LoadResult:
        """Like load, returning the full LoadResult."""
        options = options or ReplicationOptions()
        target_db = normalize_name(target_db)
        storage = self._storage_for(dump_location)
        metrics = CycleMetrics("load", target_db)
        log = replication_logger(
            __name__, db=target_db, phase="load", dump_location=dump_location
        )

        with self._hold("load", target_db):
            with metrics.time_phase("read"):
                metadata = read_dump_metadata(storage, dump_location)
                events = read_events(storage, dump_location)
                manifest = read_manifest(metadata.manifest_path(dump_location), storage)

            reconciler = MetadataReconciler(
                self.replica, target_db, external_base=options.resolved_base_dir()
            )
            result = ReconcileResult()

            with self.replica.transaction():
                current = self._check_sequence(target_db, metadata)
                if not self.replica.database_exists(target_db):
                    self.replica.put_database(Database(name=target_db))
                    log.info("Created replica database %s", target_db)

                with metrics.time_phase("apply"):
                    reconciler.apply(events, after_watermark=current, result=result)
                # Locations from a dump the replica is already past stay as they are
                replayed = current is not None and metadata.last_replication_id <= current
                if manifest is not None and not replayed:
                    with metrics.time_phase("confirm"):
                        reconciler.confirm_locations(manifest, result=result)

                watermark = metadata.last_replication_id
                if current is not None and current > watermark:
                    watermark = current
                self.replica.set_replication_watermark(target_db, watermark)

        metrics.record("events_applied", result.applied, unit="events")
        metrics.record("events_skipped", result.skipped, unit="events")
        metrics.record("locations_realigned", result.locations_realigned, unit="tables")
        log.metric("events_applied", result.applied, unit="events")
        log.info(
            "Loaded %s into %s; watermark now %d",
            dump_location,
            target_db,
            watermark,
            extra=metrics.to_log_dict(),
        )
        return LoadResult(
            target_db=target_db,
            dump_location=dump_location,
            watermark=watermark,
            reconcile=result,
            manifest_found=manifest is not None,
            metrics=metrics.summary(),
        )

    def _check_sequence(self, target_db: str, metadata: DumpMetadata) -> Optional[int]:
        """Replica watermark, after checking the dump may be applied on top of it."""
        exists = self.replica.database_exists(target_db)
        current = self.replica.get_replication_watermark(target_db) if exists else None

        if metadata.bootstrap:
            if current is not None and current >= metadata.last_replication_id:
                return current
            if exists and self.replica.list_tables(target_db):
                raise InconsistentReplicationStateError(
                    "Bootstrap dump cannot be loaded into a non-empty database",
                    database=target_db,
                    details={"dump_watermark": metadata.last_replication_id},
                    suggestion="Load a bootstrap dump into a new or empty database",
                )
            return current

        # A replica that never loaded anything sits at the start of the log
        reached = current or 0
        if metadata.from_watermark is not None and metadata.from_watermark > reached:
            raise InconsistentReplicationStateError(
                f"Dump starts after watermark {metadata.from_watermark} but the replica is at {reached}",
                database=target_db,
                details={"missing_from": reached + 1, "missing_to": metadata.from_watermark},
                suggestion="Dump again from the replica's current watermark",
            )
        return current

    # Status and cycles

    def status(self, target_db: str) -> Optional[int]:
        """The replica's replication watermark, or None if never loaded."""
        try:
            return self.replica.get_replication_watermark(target_db)
        except ObjectNotFoundError:
            return None

    def run_cycle(
        self,
        source_db: str,
        target_db: str,
        options: Optional[ReplicationOptions] = None,
    ) -> CycleResult:
        """Dump from the last checkpoint (bootstrap when none), load, checkpoint."""
        start = checkpoints.get_watermark(source_db, target_db, self.state_dir)
        dump = self.dump(source_db, from_watermark=start, options=options)
        loaded = self.load_dump(target_db, dump.dump_location, options=options)
        checkpoints.save_watermark(
            source_db,
            target_db,
            loaded.watermark,
            self.state_dir,
            dump_location=dump.dump_location,
        )
        return CycleResult(dump=dump, load=loaded)

"""Metastore collaborator: table/partition CRUD and the notification log.

The replication core only depends on the :class:`Metastore` capability
interface. Two implementations are provided:

- InMemoryMetastore: dict-backed, used by tests and embedded callers
- FileMetastore: the in-memory store persisted as one JSON document on a
  storage backend; state is written when the outermost transaction commits

Both implement ``transaction()`` as all-or-nothing: any exception raised
inside the block restores the state captured when the block was entered.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from replication.lib.errors import ObjectNotFoundError, StorageReadError, StorageWriteError
from replication.lib.events import EventLog, ReplicationEvent
from replication.lib.model import Database, Partition, Table, normalize_name
from replication.lib.storage import StorageBackend, get_storage

logger = logging.getLogger(__name__)

__all__ = ["FileMetastore", "InMemoryMetastore", "Metastore"]


class Metastore(ABC):
    """Capability interface over warehouse metadata."""

    # Databases

    @abstractmethod
    def get_database(self, name: str) -> Database:
        """Return a copy of a database (tables included).

        Raises:
            ObjectNotFoundError: the database does not exist
        """

    @abstractmethod
    def put_database(self, database: Database) -> None:
        """Create or replace a database's own attributes (not its tables)."""

    @abstractmethod
    def list_databases(self) -> List[str]:
        """Return sorted database names."""

    @abstractmethod
    def delete_database(self, name: str) -> bool:
        """Drop a database and its metadata."""

    def database_exists(self, name: str) -> bool:
        return normalize_name(name) in self.list_databases()

    # Tables

    @abstractmethod
    def get_table(self, db_name: str, table_name: str) -> Table:
        """Return a copy of a table with its partitions.

        Raises:
            ObjectNotFoundError: the database or table does not exist
        """

    @abstractmethod
    def put_table(self, db_name: str, table: Table) -> None:
        """Create or replace a table (partitions included)."""

    @abstractmethod
    def list_tables(self, db_name: str) -> List[str]:
        """Return sorted table names of a database."""

    @abstractmethod
    def delete_table(self, db_name: str, table_name: str) -> bool:
        """Remove a table's metadata; data is never touched."""

    def table_exists(self, db_name: str, table_name: str) -> bool:
        if not self.database_exists(db_name):
            return False
        return normalize_name(table_name) in self.list_tables(db_name)

    # Partitions

    def get_partition(
        self, db_name: str, table_name: str, values: Sequence[str]
    ) -> Partition:
        partition = self.get_table(db_name, table_name).get_partition(values)
        if partition is None:
            raise ObjectNotFoundError(
                f"Partition {list(values)} does not exist",
                database=db_name,
                table=table_name,
            )
        return partition

    def put_partition(self, db_name: str, table_name: str, partition: Partition) -> None:
        table = self.get_table(db_name, table_name)
        table.partitions[partition.key] = copy.deepcopy(partition)
        self.put_table(db_name, table)

    def list_partitions(self, db_name: str, table_name: str) -> List[Partition]:
        return self.get_table(db_name, table_name).sorted_partitions()

    def partition_exists(
        self, db_name: str, table_name: str, values: Sequence[str]
    ) -> bool:
        if not self.table_exists(db_name, table_name):
            return False
        return self.get_table(db_name, table_name).get_partition(values) is not None

    def delete_partition(
        self, db_name: str, table_name: str, values: Sequence[str]
    ) -> bool:
        table = self.get_table(db_name, table_name)
        if table.partitions.pop(tuple(values), None) is None:
            return False
        self.put_table(db_name, table)
        return True

    # Replication record

    def get_replication_watermark(self, db_name: str) -> Optional[int]:
        return self.get_database(db_name).replication_watermark

    def set_replication_watermark(self, db_name: str, watermark: int) -> None:
        database = self.get_database(db_name)
        database.replication_watermark = watermark
        self.put_database(database)

    # Notification log

    @property
    @abstractmethod
    def notifications(self) -> EventLog:
        """The ordered event log of this metastore."""

    @abstractmethod
    def append_event(self, event: ReplicationEvent) -> ReplicationEvent:
        """Append an event to the notification log."""

    # Consistency

    @abstractmethod
    def transaction(self) -> Any:
        """Context manager making the enclosed mutations all-or-nothing."""

    @abstractmethod
    def consistent_read(self) -> Any:
        """Context manager holding off writers while several reads are made.

        Unlike ``transaction()`` nothing is captured for rollback and nothing
        is persisted when the block exits.
        """

    def snapshot(self, db_name: str) -> Database:
        """Point-in-time copy of a database for dumping."""
        return self.get_database(db_name)


class InMemoryMetastore(Metastore):
    """Dict-backed metastore.

    A single re-entrant lock serializes access, so a transaction on one
    database never observes a half-applied transaction on another.
    """

    def __init__(
        self,
        databases: Optional[Dict[str, Database]] = None,
        events: Optional[EventLog] = None,
    ) -> None:
        self._databases: Dict[str, Database] = databases or {}
        self._events = events or EventLog()
        self._lock = threading.RLock()
        self._depth = 0

    def _require_db(self, name: str) -> Database:
        database = self._databases.get(normalize_name(name))
        if database is None:
            raise ObjectNotFoundError(f"Database '{name}' does not exist", database=name)
        return database

    def get_database(self, name: str) -> Database:
        with self._lock:
            return copy.deepcopy(self._require_db(name))

    def put_database(self, database: Database) -> None:
        with self.transaction():
            existing = self._databases.get(database.name)
            stored = copy.deepcopy(database)
            stored.tables = existing.tables if existing else {}
            self._databases[database.name] = stored

    def list_databases(self) -> List[str]:
        with self._lock:
            return sorted(self._databases)

    def delete_database(self, name: str) -> bool:
        with self.transaction():
            return self._databases.pop(normalize_name(name), None) is not None

    def get_table(self, db_name: str, table_name: str) -> Table:
        with self._lock:
            table = self._require_db(db_name).get_table(table_name)
            if table is None:
                raise ObjectNotFoundError(
                    f"Table '{table_name}' does not exist",
                    database=db_name,
                    table=table_name,
                )
            return copy.deepcopy(table)

    def put_table(self, db_name: str, table: Table) -> None:
        with self.transaction():
            self._require_db(db_name).tables[table.name] = copy.deepcopy(table)

    def list_tables(self, db_name: str) -> List[str]:
        with self._lock:
            return sorted(self._require_db(db_name).tables)

    def delete_table(self, db_name: str, table_name: str) -> bool:
        with self.transaction():
            tables = self._require_db(db_name).tables
            return tables.pop(normalize_name(table_name), None) is not None

    @property
    def notifications(self) -> EventLog:
        return self._events

    def append_event(self, event: ReplicationEvent) -> ReplicationEvent:
        with self.transaction():
            return self._events.append(event)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryMetastore"]:
        with self._lock:
            saved_databases = copy.deepcopy(self._databases)
            saved_events = copy.deepcopy(self._events)
            self._depth += 1
            try:
                yield self
                if self._depth == 1:
                    self._commit()
            except BaseException:
                self._databases = saved_databases
                self._events = saved_events
                if self._depth == 1:
                    logger.debug("Metastore transaction rolled back")
                raise
            finally:
                self._depth -= 1

    @contextmanager
    def consistent_read(self) -> Iterator["InMemoryMetastore"]:
        with self._lock:
            yield self

    def _commit(self) -> None:
        """Hook run when the outermost transaction succeeds."""

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "databases": [self._databases[n].to_dict() for n in sorted(self._databases)],
                "events": self._events.to_list(),
            }

    def load_dict(self, data: Dict[str, Any]) -> None:
        with self._lock:
            databases = [Database.from_dict(d) for d in data.get("databases", [])]
            self._databases = {d.name: d for d in databases}
            self._events = EventLog.from_list(data.get("events", []))


class FileMetastore(InMemoryMetastore):
    """Metastore persisted as a JSON document.

    Example:
        >>> primary = FileMetastore("./state/primary_metastore.json")
        >>> primary.list_databases()
        ['sales']
    """

    def __init__(self, path: str, storage: Optional[StorageBackend] = None) -> None:
        super().__init__()
        self.path = path
        self.storage = storage or get_storage()
        if self.storage.exists(path):
            self.reload()

    def reload(self) -> None:
        try:
            data = json.loads(self.storage.read_text(self.path))
        except (OSError, ValueError) as exc:
            raise StorageReadError(
                "Failed to read metastore file", path=self.path, cause=exc
            ) from exc
        self.load_dict(data)
        logger.debug("Loaded metastore from %s", self.path)

    def _commit(self) -> None:
        payload = json.dumps(self.to_dict(), indent=2).encode("utf-8")
        result = self.storage.write_bytes_atomic(self.path, payload)
        if not result.success:
            raise StorageWriteError(
                f"Failed to persist metastore: {result.error}", path=self.path
            )

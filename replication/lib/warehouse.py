"""Warehouse operations that mutate metadata and emit replication events.

This is the stand-in for the SQL executor: every DDL/DML call updates the
metastore and appends exactly one event to its notification log inside the
same transaction. It also answers simple reads (``select_rows``) by reading
whatever data currently sits at a table's or partition's location, which is
how row visibility on a replica is governed.

Example:
    >>> wh = Warehouse(InMemoryMetastore(), warehouse_root="file:///tmp/wh")
    >>> wh.create_database("sales")
    >>> wh.create_table("sales", "t1", [Column("id", "int")], external=True)
    >>> wh.insert("sales", "t1", [[1], [2]])
    >>> wh.select_rows("sales", "t1")
    [['1'], ['2']]
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from replication.lib.errors import ObjectNotFoundError
from replication.lib.events import EventType, ReplicationEvent
from replication.lib.location import DEFAULT_FS, canonicalize, join_location
from replication.lib.metastore import Metastore
from replication.lib.model import (
    Column,
    Database,
    Partition,
    Table,
    TableKind,
    default_partition_location,
    normalize_name,
)
from replication.lib.storage import StorageBackend, get_storage

logger = logging.getLogger(__name__)

__all__ = ["PartitionValues", "Warehouse"]

PartitionValues = Union[Dict[str, Any], Sequence[Any]]


class Warehouse:
    """DDL/DML front end over a metastore and a filesystem."""

    def __init__(
        self,
        metastore: Metastore,
        *,
        warehouse_root: str,
        storage: Optional[StorageBackend] = None,
        default_fs: str = DEFAULT_FS,
    ) -> None:
        self.metastore = metastore
        self.default_fs = default_fs
        self.warehouse_root = canonicalize(warehouse_root, default_fs)
        self._storage = storage

    def storage_for(self, location: str) -> StorageBackend:
        return self._storage or get_storage(location)

    def _location(self, location: str) -> str:
        return canonicalize(location, self.default_fs)

    def _emit(self, event_type: EventType, source: Table, db_name: str, **fields: Any) -> ReplicationEvent:
        event = ReplicationEvent(
            event_id=self.metastore.notifications.next_event_id(),
            event_type=event_type,
            db_name=db_name,
            table_name=source.name,
            table_kind=source.kind,
            **fields,
        )
        return self.metastore.append_event(event)

    def _partition_values(self, table: Table, partition: PartitionValues) -> List[str]:
        if isinstance(partition, dict):
            lowered = {normalize_name(k): v for k, v in partition.items()}
            missing = [k for k in table.partition_keys if k not in lowered]
            if missing:
                raise ValueError(f"Missing partition keys {missing} for {table.name}")
            return [str(lowered[k]) for k in table.partition_keys]
        values = [str(v) for v in partition]
        if len(values) != len(table.partition_keys):
            raise ValueError(
                f"{table.name} expects {len(table.partition_keys)} partition values"
            )
        return values

    # DDL

    def create_database(self, name: str, location: Optional[str] = None) -> Database:
        db_name = normalize_name(name)
        database = Database(
            name=db_name,
            location=self._location(location)
            if location
            else join_location(self.warehouse_root, f"{db_name}.db"),
        )
        self.metastore.put_database(database)
        logger.info("Created database %s", db_name)
        return database

    def create_table(
        self,
        db_name: str,
        name: str,
        columns: Sequence[Column],
        *,
        partition_keys: Sequence[str] = (),
        external: bool = False,
        location: Optional[str] = None,
    ) -> Table:
        """CREATE [EXTERNAL] TABLE ... [PARTITIONED BY ...] [LOCATION ...]."""
        database = self.metastore.get_database(db_name)
        table_name = normalize_name(name)
        if database.get_table(table_name) is not None:
            raise ValueError(f"Table {database.name}.{table_name} already exists")

        table = Table(
            name=table_name,
            kind=TableKind.EXTERNAL if external else TableKind.MANAGED,
            columns=list(columns),
            partition_keys=[normalize_name(k) for k in partition_keys],
            location=self._location(location)
            if location
            else join_location(database.location or self.warehouse_root, table_name),
        )

        with self.metastore.transaction():
            self.metastore.put_table(database.name, table)
            self._emit(EventType.CREATE_TABLE, table, database.name, table=table.copy())

        self.storage_for(table.location).makedirs(table.location)
        logger.info("Created %s table %s.%s at %s", table.kind.value, database.name, table.name, table.location)
        return table

    def create_table_as_select(
        self,
        db_name: str,
        name: str,
        source_table: str,
        *,
        external: bool = False,
        location: Optional[str] = None,
    ) -> Table:
        """CREATE [EXTERNAL] TABLE name AS SELECT * FROM source_table."""
        source = self.metastore.get_table(db_name, source_table)
        rows = self.select_rows(db_name, source_table)
        table = self.create_table(
            db_name, name, source.columns, external=external, location=location
        )
        if rows:
            self.insert(db_name, table.name, rows)
        return self.metastore.get_table(db_name, table.name)

    def add_partition(
        self,
        db_name: str,
        table_name: str,
        partition: PartitionValues,
        *,
        location: Optional[str] = None,
    ) -> Partition:
        """ALTER TABLE ... ADD PARTITION (...) [LOCATION ...]."""
        table = self.metastore.get_table(db_name, table_name)
        values = self._partition_values(table, partition)
        if table.get_partition(values) is not None:
            raise ValueError(f"Partition {table.partition_spec(values)} already exists")

        custom = self._location(location) if location else None
        part = Partition(
            values=values,
            location=custom
            or default_partition_location(table.location, table.partition_keys, values),
        )

        with self.metastore.transaction():
            self.metastore.put_partition(db_name, table.name, part)
            self._emit(
                EventType.ADD_PARTITION,
                table,
                db_name,
                partition_values=values,
                location=custom,
                table_location=table.location,
            )

        self.storage_for(part.location).makedirs(part.location)
        return part

    def drop_partition(self, db_name: str, table_name: str, partition: PartitionValues) -> None:
        """ALTER TABLE ... DROP PARTITION (...); external data is kept."""
        table = self.metastore.get_table(db_name, table_name)
        values = self._partition_values(table, partition)
        part = table.get_partition(values)
        if part is None:
            raise ObjectNotFoundError(
                f"Partition {table.partition_spec(values)} does not exist",
                database=db_name,
                table=table.name,
            )

        with self.metastore.transaction():
            self.metastore.delete_partition(db_name, table.name, values)
            self._emit(EventType.DROP_PARTITION, table, db_name, partition_values=values)

        self._drop_data(table, part.location)

    def alter_table_location(self, db_name: str, table_name: str, location: str) -> Table:
        """ALTER TABLE ... SET LOCATION; data is neither moved nor deleted."""
        table = self.metastore.get_table(db_name, table_name)
        table.location = self._location(location)

        with self.metastore.transaction():
            self.metastore.put_table(db_name, table)
            self._emit(EventType.ALTER_TABLE_LOCATION, table, db_name, location=table.location)
        return table

    def alter_partition_location(
        self,
        db_name: str,
        table_name: str,
        partition: PartitionValues,
        location: str,
    ) -> Partition:
        """ALTER TABLE ... PARTITION (...) SET LOCATION."""
        table = self.metastore.get_table(db_name, table_name)
        values = self._partition_values(table, partition)
        part = table.get_partition(values)
        if part is None:
            raise ObjectNotFoundError(
                f"Partition {table.partition_spec(values)} does not exist",
                database=db_name,
                table=table.name,
            )
        part.location = self._location(location)

        with self.metastore.transaction():
            self.metastore.put_partition(db_name, table.name, part)
            self._emit(
                EventType.ALTER_PARTITION_LOCATION,
                table,
                db_name,
                partition_values=values,
                location=part.location,
            )
        return part

    def drop_table(self, db_name: str, table_name: str) -> None:
        """DROP TABLE; only MANAGED tables lose their data."""
        table = self.metastore.get_table(db_name, table_name)

        with self.metastore.transaction():
            self.metastore.delete_table(db_name, table.name)
            self._emit(EventType.DROP_TABLE, table, db_name)

        self._drop_data(table, table.location)

    def _drop_data(self, table: Table, location: Optional[str]) -> None:
        if table.kind is TableKind.EXTERNAL:
            return
        if table.kind is TableKind.MANAGED:
            if location:
                self.storage_for(location).delete(location)
            return
        raise ValueError(f"Unknown table kind {table.kind!r}")

    # DML

    def insert(
        self,
        db_name: str,
        table_name: str,
        rows: Sequence[Sequence[Any]],
        *,
        partition: Optional[PartitionValues] = None,
    ) -> str:
        """INSERT INTO ... [PARTITION (...)] VALUES ...

        A missing partition is added first, as dynamic partition creation
        does. Returns the data file written.
        """
        table = self.metastore.get_table(db_name, table_name)
        values: Optional[List[str]] = None
        if table.is_partitioned:
            if partition is None:
                raise ValueError(f"{table.name} is partitioned; a partition is required")
            values = self._partition_values(table, partition)
            part = table.get_partition(values)
            if part is None:
                part = self.add_partition(db_name, table.name, values)
            target = part.location
        else:
            target = table.location

        with self.metastore.transaction():
            event = self._emit(EventType.INSERT, table, db_name, partition_values=values)

        data_file = join_location(target, f"{event.event_id:06d}_0")
        content = "".join(",".join(str(v) for v in row) + "\n" for row in rows)
        self.storage_for(data_file).write_text(data_file, content)
        return data_file

    # Reads

    def select_rows(
        self,
        db_name: str,
        table_name: str,
        *,
        partition: Optional[PartitionValues] = None,
    ) -> List[List[str]]:
        """Rows currently visible through the table's metadata."""
        table = self.metastore.get_table(db_name, table_name)
        if not table.is_partitioned:
            return self._read_location(table.location)

        parts = table.sorted_partitions()
        if partition is not None:
            wanted = self._partition_values(table, partition)
            parts = [p for p in parts if p.values == wanted]

        rows: List[List[str]] = []
        for part in parts:
            rows.extend(self._read_location(part.location))
        return rows

    def _read_location(self, location: Optional[str]) -> List[List[str]]:
        if not location:
            return []
        storage = self.storage_for(location)
        rows: List[List[str]] = []
        for info in storage.list_files(location):
            name = info.path.rsplit("/", 1)[-1]
            if name.startswith((".", "_")):
                continue
            text = storage.read_text(join_location(location, name))
            rows.extend(line.split(",") for line in text.splitlines() if line)
        return rows

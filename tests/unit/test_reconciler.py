"""Tests for the metadata reconciler.

Tests cover:
- State transitions per event type
- External location rebasing, managed location clearing
- Replay skipping and idempotent creates
- Fatal inconsistencies
- Manifest location confirmation and realignment
"""

import pytest

from replication.lib.errors import InconsistentReplicationStateError
from replication.lib.events import EventType, ReplicationEvent
from replication.lib.manifest import ManifestEntry
from replication.lib.metastore import InMemoryMetastore
from replication.lib.model import Column, Database, Partition, Table, TableKind
from replication.lib.reconciler import MetadataReconciler, ObjectState

BASE = "hdfs://replica:8020/replica_external_base"
SRC = "hdfs://primary:8020/warehouse/repl_src.db"


def table(name: str, kind: TableKind = TableKind.EXTERNAL, keys=()) -> Table:
    return Table(
        name=name,
        kind=kind,
        columns=[Column("a", "int")],
        partition_keys=list(keys),
        location=f"{SRC}/{name}",
    )


def ev(event_id: int, event_type: EventType, name: str = "t1", kind: TableKind = TableKind.EXTERNAL, **fields):
    return ReplicationEvent(
        event_id=event_id,
        event_type=event_type,
        db_name="repl_src",
        table_name=name,
        table_kind=kind,
        **fields,
    )


def create(event_id: int, name: str = "t1", kind: TableKind = TableKind.EXTERNAL, keys=()):
    return ev(event_id, EventType.CREATE_TABLE, name, kind, table=table(name, kind, keys))


@pytest.fixture
def replica() -> InMemoryMetastore:
    ms = InMemoryMetastore()
    ms.put_database(Database(name="repl_dst"))
    return ms


@pytest.fixture
def reconciler(replica) -> MetadataReconciler:
    return MetadataReconciler(replica, "repl_dst", external_base=BASE)


class TestCreateAndDrop:
    """Tests for table-level events."""

    def test_create_external_rebases_location(self, reconciler, replica):
        result = reconciler.apply([create(1)])

        created = replica.get_table("repl_dst", "t1")
        assert created.location == f"{BASE}/warehouse/repl_src.db/t1"
        assert result.applied == 1
        assert result.last_event_id == 1
        assert reconciler.table_state("t1") is ObjectState.PRESENT

    def test_create_without_base_keeps_location(self, replica):
        MetadataReconciler(replica, "repl_dst").apply([create(1)])
        assert replica.get_table("repl_dst", "t1").location == f"{SRC}/t1"

    def test_create_managed_has_no_location(self, reconciler, replica):
        reconciler.apply([create(1, "m1", TableKind.MANAGED)])
        assert replica.get_table("repl_dst", "m1").location is None

    def test_create_present_is_noop(self, reconciler, replica):
        result = reconciler.apply([create(1), create(2)])
        assert result.noops == 1
        assert replica.list_tables("repl_dst") == ["t1"]

    def test_drop_table(self, reconciler, replica):
        reconciler.apply([create(1), ev(2, EventType.DROP_TABLE)])
        assert reconciler.table_state("t1") is ObjectState.ABSENT

    def test_drop_absent_table_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError) as exc_info:
            reconciler.apply([ev(4, EventType.DROP_TABLE)])
        assert exc_info.value.event_id == 4

    def test_kind_mismatch_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply([create(1), ev(2, EventType.DROP_TABLE, kind=TableKind.MANAGED)])

    def test_create_without_definition_is_fatal(self, reconciler, replica):
        with pytest.raises(InconsistentReplicationStateError) as exc_info:
            reconciler.apply([ev(4, EventType.CREATE_TABLE, "t9")])
        assert exc_info.value.event_id == 4
        assert not replica.table_exists("repl_dst", "t9")


class TestPartitions:
    """Tests for partition events."""

    def test_add_partition_default_location(self, reconciler, replica):
        reconciler.apply(
            [
                create(1, "t2", keys=["country"]),
                ev(2, EventType.ADD_PARTITION, "t2", partition_values=["india"], table_location=f"{SRC}/t2"),
            ]
        )
        part = replica.get_partition("repl_dst", "t2", ["india"])
        assert part.location == f"{BASE}/warehouse/repl_src.db/t2/country=india"

    def test_add_partition_custom_location_keeps_own_path(self, reconciler, replica):
        reconciler.apply(
            [
                create(1, "t2", keys=["country"]),
                ev(
                    2,
                    EventType.ADD_PARTITION,
                    "t2",
                    partition_values=["us"],
                    location="hdfs://primary:8020/custom/us",
                    table_location=f"{SRC}/t2",
                ),
            ]
        )
        part = replica.get_partition("repl_dst", "t2", ["us"])
        assert part.location == f"{BASE}/custom/us"

    def test_add_existing_partition_is_noop(self, reconciler):
        add = ev(2, EventType.ADD_PARTITION, "t2", partition_values=["us"], table_location=f"{SRC}/t2")
        result = reconciler.apply([create(1, "t2", keys=["country"]), add, add])
        assert result.noops == 1

    def test_add_partition_to_absent_table_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply(
                [ev(1, EventType.ADD_PARTITION, "t2", partition_values=["us"], table_location=f"{SRC}/t2")]
            )

    def test_drop_partition(self, reconciler, replica):
        reconciler.apply(
            [
                create(1, "t2", keys=["country"]),
                ev(2, EventType.ADD_PARTITION, "t2", partition_values=["us"], table_location=f"{SRC}/t2"),
                ev(3, EventType.DROP_PARTITION, "t2", partition_values=["us"]),
            ]
        )
        assert replica.list_partitions("repl_dst", "t2") == []

    def test_drop_absent_partition_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply(
                [create(1, "t2", keys=["country"]), ev(2, EventType.DROP_PARTITION, "t2", partition_values=["us"])]
            )

    def test_alter_partition_location(self, reconciler, replica):
        reconciler.apply(
            [
                create(1, "t2", keys=["country"]),
                ev(2, EventType.ADD_PARTITION, "t2", partition_values=["us"], table_location=f"{SRC}/t2"),
                ev(
                    3,
                    EventType.ALTER_PARTITION_LOCATION,
                    "t2",
                    partition_values=["us"],
                    location="hdfs://primary:8020/moved/us",
                ),
            ]
        )
        assert replica.get_partition("repl_dst", "t2", ["us"]).location == f"{BASE}/moved/us"

    def test_create_carries_partitions(self, reconciler, replica):
        source = table("t2", keys=["country"])
        source.partitions[("india",)] = Partition(["india"], f"{SRC}/t2/country=india")
        reconciler.apply([ev(1, EventType.CREATE_TABLE, "t2", table=source)])
        part = replica.get_partition("repl_dst", "t2", ["india"])
        assert part.location == f"{BASE}/warehouse/repl_src.db/t2/country=india"


class TestAlterAndInsert:
    """Tests for location changes and DML."""

    def test_alter_table_location(self, reconciler, replica):
        result = reconciler.apply(
            [create(1), ev(2, EventType.ALTER_TABLE_LOCATION, location="hdfs://primary:8020/new/t1")]
        )
        assert replica.get_table("repl_dst", "t1").location == f"{BASE}/new/t1"
        assert result.transitions[-1] == "2:t1->location_updated"

    def test_alter_absent_table_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply([ev(1, EventType.ALTER_TABLE_LOCATION, location="hdfs://p/x")])

    def test_insert_is_metadata_noop(self, reconciler, replica):
        reconciler.apply([create(1)])
        before = replica.get_table("repl_dst", "t1")
        reconciler.apply([ev(2, EventType.INSERT)])
        assert replica.get_table("repl_dst", "t1") == before

    def test_insert_into_absent_table_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply([ev(1, EventType.INSERT)])


class TestOrdering:
    """Tests for watermark handling."""

    def test_replayed_events_are_skipped(self, reconciler):
        result = reconciler.apply([create(1), ev(2, EventType.DROP_TABLE)], after_watermark=2)
        assert result.skipped == 2
        assert result.applied == 0

    def test_out_of_order_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply([create(3), create(2, "t2")])

    def test_equal_ids_allowed(self, reconciler, replica):
        reconciler.apply([create(5), create(5, "t2")])
        assert replica.list_tables("repl_dst") == ["t1", "t2"]

    def test_malformed_event_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.apply([ev(1, EventType.CREATE_TABLE)])


class TestConfirmLocations:
    """Tests for confirm_locations()."""

    def test_confirms_matching_location(self, reconciler):
        reconciler.apply([create(1)])
        result = reconciler.confirm_locations([ManifestEntry("t1", f"{SRC}/t1")])
        assert result.locations_confirmed == 1
        assert result.locations_realigned == 0

    def test_realigns_drifted_location(self, reconciler, replica):
        reconciler.apply([create(1)])
        result = reconciler.confirm_locations([ManifestEntry("t1", "hdfs://primary:8020/elsewhere/t1")])
        assert result.locations_realigned == 1
        assert replica.get_table("repl_dst", "t1").location == f"{BASE}/elsewhere/t1"

    def test_missing_table_is_fatal(self, reconciler):
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.confirm_locations([ManifestEntry("t9", f"{SRC}/t9")])

    def test_managed_table_is_fatal(self, reconciler):
        reconciler.apply([create(1, "m1", TableKind.MANAGED)])
        with pytest.raises(InconsistentReplicationStateError):
            reconciler.confirm_locations([ManifestEntry("m1", f"{SRC}/m1")])

"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root))

from replication.lib.config import ReplicationOptions  # noqa: E402
from replication.lib.coordinator import ReplicationCoordinator  # noqa: E402
from replication.lib.metastore import InMemoryMetastore  # noqa: E402
from replication.lib.model import Column  # noqa: E402
from replication.lib.warehouse import Warehouse  # noqa: E402

COLUMNS = [Column("a", "int")]


@pytest.fixture
def primary() -> InMemoryMetastore:
    return InMemoryMetastore()


@pytest.fixture
def replica() -> InMemoryMetastore:
    return InMemoryMetastore()


@pytest.fixture
def warehouse_root(tmp_path: Path) -> str:
    return f"file://{tmp_path}/warehouse"


@pytest.fixture
def warehouse(primary: InMemoryMetastore, warehouse_root: str) -> Warehouse:
    """Primary warehouse with an empty ``repl_src`` database."""
    wh = Warehouse(primary, warehouse_root=warehouse_root)
    wh.create_database("repl_src")
    return wh


@pytest.fixture
def replica_base(tmp_path: Path) -> str:
    return f"file://{tmp_path}/replica_external_base"


@pytest.fixture
def coordinator(
    primary: InMemoryMetastore, replica: InMemoryMetastore, tmp_path: Path
) -> ReplicationCoordinator:
    return ReplicationCoordinator(
        primary,
        replica,
        dump_base=str(tmp_path / "dumps"),
        lock_timeout=1.0,
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def external_options(replica_base: str) -> ReplicationOptions:
    return ReplicationOptions(
        include_external_tables=True,
        external_table_base_dir=replica_base,
    )


@pytest.fixture
def columns():
    return list(COLUMNS)

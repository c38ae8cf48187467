"""Warehouse metadata model: databases, tables and partitions.

Only EXTERNAL tables (and their partitions) take part in the manifest and
rebase protocol. MANAGED table data follows the ordinary copy path.

Database and table names are case-insensitive and stored lowercased.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from replication.lib.location import join_location

__all__ = [
    "Column",
    "Database",
    "Partition",
    "Table",
    "TableKind",
    "default_partition_location",
    "normalize_name",
    "partition_spec",
]


def normalize_name(name: str) -> str:
    """Return the case-insensitive identity of a database or table name."""
    return name.strip().lower()


class TableKind(Enum):
    """Who owns a table's data lifecycle."""

    MANAGED = "managed"
    EXTERNAL = "external"

    @classmethod
    def normalize(cls, value: Any) -> "TableKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = [m.value for m in cls]
            raise ValueError(f"Invalid table kind '{value}'. Valid: {valid}") from None


def partition_spec(keys: Sequence[str], values: Sequence[str]) -> str:
    """Render a partition spec such as ``country=india/year=2024``."""
    if len(keys) != len(values):
        raise ValueError(
            f"Partition has {len(values)} values for {len(keys)} partition keys"
        )
    return "/".join(f"{k}={v}" for k, v in zip(keys, values))


def default_partition_location(
    table_location: str, keys: Sequence[str], values: Sequence[str]
) -> str:
    """Default data location of a partition: ``<table location>/<spec>``."""
    return join_location(table_location, partition_spec(keys, values))


@dataclass
class Column:
    """A typed column."""

    name: str
    type: str = "string"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(name=data["name"], type=data.get("type", "string"))


@dataclass
class Partition:
    """A partition identified by its ordered partition-column values."""

    values: List[str]
    location: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, ...]:
        return tuple(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "values": list(self.values),
            "location": self.location,
            "parameters": dict(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Partition":
        return cls(
            values=[str(v) for v in data["values"]],
            location=data.get("location"),
            parameters=dict(data.get("parameters", {})),
        )


@dataclass
class Table:
    """Table metadata.

    ``location`` is the absolute data location URI. Replica MANAGED tables
    carry ``None`` until the ordinary copy path assigns one.
    """

    name: str
    kind: TableKind
    columns: List[Column] = field(default_factory=list)
    partition_keys: List[str] = field(default_factory=list)
    location: Optional[str] = None
    partitions: Dict[Tuple[str, ...], Partition] = field(default_factory=dict)
    parameters: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.name = normalize_name(self.name)
        self.kind = TableKind.normalize(self.kind)

    @property
    def is_external(self) -> bool:
        return self.kind is TableKind.EXTERNAL

    @property
    def is_partitioned(self) -> bool:
        return bool(self.partition_keys)

    def partition_spec(self, values: Sequence[str]) -> str:
        return partition_spec(self.partition_keys, values)

    def get_partition(self, values: Sequence[str]) -> Optional[Partition]:
        return self.partitions.get(tuple(values))

    def sorted_partitions(self) -> List[Partition]:
        return [self.partitions[k] for k in sorted(self.partitions)]

    def copy(self, *, with_partitions: bool = True) -> "Table":
        clone = copy.deepcopy(self)
        if not with_partitions:
            clone.partitions = {}
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "columns": [c.to_dict() for c in self.columns],
            "partition_keys": list(self.partition_keys),
            "location": self.location,
            "partitions": [p.to_dict() for p in self.sorted_partitions()],
            "parameters": dict(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        partitions = [Partition.from_dict(p) for p in data.get("partitions", [])]
        return cls(
            name=data["name"],
            kind=TableKind.normalize(data["kind"]),
            columns=[Column.from_dict(c) for c in data.get("columns", [])],
            partition_keys=list(data.get("partition_keys", [])),
            location=data.get("location"),
            partitions={p.key: p for p in partitions},
            parameters=dict(data.get("parameters", {})),
        )


@dataclass
class Database:
    """A named container of tables.

    ``replication_watermark`` is the replication record of a replica
    database: the id of the last primary event applied to it.
    """

    name: str
    tables: Dict[str, Table] = field(default_factory=dict)
    location: Optional[str] = None
    replication_watermark: Optional[int] = None
    parameters: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.name = normalize_name(self.name)

    def get_table(self, name: str) -> Optional[Table]:
        return self.tables.get(normalize_name(name))

    def external_tables(self) -> List[Table]:
        return [t for _, t in sorted(self.tables.items()) if t.is_external]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "location": self.location,
            "replication_watermark": self.replication_watermark,
            "parameters": dict(self.parameters),
            "tables": [self.tables[n].to_dict() for n in sorted(self.tables)],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Database":
        tables = [Table.from_dict(t) for t in data.get("tables", [])]
        return cls(
            name=data["name"],
            location=data.get("location"),
            replication_watermark=data.get("replication_watermark"),
            parameters=dict(data.get("parameters", {})),
            tables={t.name: t for t in tables},
        )

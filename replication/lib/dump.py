"""Dump artifacts: the event file and the dump metadata.

A dump directory contains:

- ``_events.json``       events to replay on the replica, in id order
- the external table manifest, when external tables are in scope
- ``_dumpmetadata.json`` written last; a dump without it is incomplete

Both JSON files are written atomically.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from replication.lib.errors import StorageReadError, StorageWriteError
from replication.lib.events import ReplicationEvent
from replication.lib.location import join_location
from replication.lib.manifest import manifest_path
from replication.lib.storage import StorageBackend

logger = logging.getLogger(__name__)

__all__ = [
    "DUMP_METADATA_FILE_NAME",
    "EVENTS_FILE_NAME",
    "DumpMetadata",
    "DumpType",
    "read_dump_metadata",
    "read_events",
    "write_dump_metadata",
    "write_events",
]

EVENTS_FILE_NAME = "_events.json"
DUMP_METADATA_FILE_NAME = "_dumpmetadata.json"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DumpType(Enum):
    """Full snapshot or event range."""

    BOOTSTRAP = "bootstrap"
    INCREMENTAL = "incremental"


@dataclass
class DumpMetadata:
    """Description of a completed dump."""

    db_name: str
    dump_type: DumpType
    last_replication_id: int
    from_watermark: Optional[int] = None
    event_count: int = 0
    include_external_tables: bool = False
    metadata_only: bool = False
    manifest_written: bool = False
    external_tables: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now_iso)

    @property
    def bootstrap(self) -> bool:
        return self.dump_type is DumpType.BOOTSTRAP

    def manifest_path(self, dump_location: str) -> str:
        return manifest_path(dump_location, self.db_name, self.bootstrap)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "db_name": self.db_name,
            "dump_type": self.dump_type.value,
            "last_replication_id": self.last_replication_id,
            "from_watermark": self.from_watermark,
            "event_count": self.event_count,
            "include_external_tables": self.include_external_tables,
            "metadata_only": self.metadata_only,
            "manifest_written": self.manifest_written,
            "external_tables": list(self.external_tables),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DumpMetadata":
        return cls(
            db_name=data["db_name"],
            dump_type=DumpType(data["dump_type"]),
            last_replication_id=int(data["last_replication_id"]),
            from_watermark=data.get("from_watermark"),
            event_count=int(data.get("event_count", 0)),
            include_external_tables=bool(data.get("include_external_tables", False)),
            metadata_only=bool(data.get("metadata_only", False)),
            manifest_written=bool(data.get("manifest_written", False)),
            external_tables=list(data.get("external_tables", [])),
            created_at=data.get("created_at", ""),
        )


def _write_json(storage: StorageBackend, path: str, payload: Any) -> None:
    data = json.dumps(payload, indent=2).encode("utf-8")
    result = storage.write_bytes_atomic(path, data)
    if not result.success:
        raise StorageWriteError(f"Failed to write {path}: {result.error}", path=path)


def _read_json(storage: StorageBackend, path: str) -> Any:
    if not storage.exists(path):
        raise StorageReadError(
            "Dump artifact not found",
            path=path,
            suggestion="Check the dump location; an interrupted dump has no _dumpmetadata.json",
        )
    try:
        return json.loads(storage.read_text(path))
    except (OSError, ValueError) as exc:
        raise StorageReadError("Failed to read dump artifact", path=path, cause=exc) from exc


def write_events(storage: StorageBackend, dump_location: str, events: List[ReplicationEvent]) -> str:
    path = join_location(dump_location, EVENTS_FILE_NAME)
    _write_json(storage, path, [e.to_dict() for e in events])
    logger.debug("Wrote %d events to %s", len(events), path)
    return path


def read_events(storage: StorageBackend, dump_location: str) -> List[ReplicationEvent]:
    path = join_location(dump_location, EVENTS_FILE_NAME)
    payload = _read_json(storage, path)
    try:
        return [ReplicationEvent.from_dict(e) for e in payload]
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageReadError("Malformed event file", path=path, cause=exc) from exc


def write_dump_metadata(storage: StorageBackend, dump_location: str, metadata: DumpMetadata) -> str:
    path = join_location(dump_location, DUMP_METADATA_FILE_NAME)
    _write_json(storage, path, metadata.to_dict())
    return path


def read_dump_metadata(storage: StorageBackend, dump_location: str) -> DumpMetadata:
    path = join_location(dump_location, DUMP_METADATA_FILE_NAME)
    payload = _read_json(storage, path)
    try:
        return DumpMetadata.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageReadError("Malformed dump metadata", path=path, cause=exc) from exc

"""External table manifest: construction during dump, parsing during load.

The manifest lists every EXTERNAL table in the dump's scope with its
absolute data location, one record per line:

    <table name>,<base64(utf8(location URI))>

It is UTF-8, has no header and is written atomically. When the scope holds
no EXTERNAL table the file is not created at all; its absence tells the
load to skip external table location confirmation.

Paths:
    bootstrap dump   -> <dump root>/<database lowercased>/_external_tables_info
    incremental dump -> <dump root>/_external_tables_info
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from replication.lib.errors import (
    EncodingError,
    ManifestFormatError,
    StorageReadError,
    StorageWriteError,
)
from replication.lib.location import decode, encode, join_location
from replication.lib.model import Table, TableKind, normalize_name
from replication.lib.storage import StorageBackend

logger = logging.getLogger(__name__)

__all__ = [
    "MANIFEST_FILE_NAME",
    "DumpSnapshot",
    "IncrementalScope",
    "ManifestEntry",
    "ManifestWriteResult",
    "manifest_path",
    "read_manifest",
    "write_manifest",
]

MANIFEST_FILE_NAME = "_external_tables_info"

FIELD_SEPARATOR = ","


class IncrementalScope(Enum):
    """Which EXTERNAL tables an incremental dump's manifest lists.

    - ALL_EXTERNAL: every EXTERNAL table existing at the end of the event
      range, so unchanged tables have their location reconfirmed
    - TOUCHED: only EXTERNAL tables with at least one event in the range
      (CREATE, INSERT, partition ADD/DROP or a location change)

    Tables dropped within the range are never listed.
    """

    ALL_EXTERNAL = "all_external"
    TOUCHED = "touched"


def manifest_path(dump_root: str, db_name: str, bootstrap: bool) -> str:
    """Return where the manifest of a dump lives."""
    if bootstrap:
        return join_location(dump_root, db_name.lower(), MANIFEST_FILE_NAME)
    return join_location(dump_root, MANIFEST_FILE_NAME)


@dataclass(frozen=True)
class ManifestEntry:
    """One manifest record: a table and its absolute data location."""

    table_name: str
    location: str

    def to_line(self) -> str:
        name = self.table_name
        if not name or FIELD_SEPARATOR in name or "\n" in name or "\r" in name:
            raise EncodingError(
                "Table name cannot be stored in the manifest",
                location=self.location,
                table=name,
            )
        return f"{name}{FIELD_SEPARATOR}{encode(self.location)}"

    @classmethod
    def from_line(
        cls, line: str, *, path: Optional[str] = None, line_number: Optional[int] = None
    ) -> "ManifestEntry":
        fields = line.split(FIELD_SEPARATOR)
        if len(fields) != 2:
            raise ManifestFormatError(
                f"Expected 2 fields (table,location), found {len(fields)}",
                path=path,
                line_number=line_number,
            )
        name, token = fields
        if not name or not token:
            raise ManifestFormatError(
                "Empty table name or location", path=path, line_number=line_number
            )
        try:
            location = decode(token)
        except EncodingError as exc:
            raise ManifestFormatError(
                f"Undecodable location for table '{name}'",
                path=path,
                line_number=line_number,
                table=name,
            ) from exc
        return cls(table_name=normalize_name(name), location=location)


@dataclass
class DumpSnapshot:
    """The tables a dump covers.

    Bootstrap snapshots hold every table of the database; incremental ones
    hold the tables selected by the IncrementalScope policy.
    """

    db_name: str
    tables: List[Table] = field(default_factory=list)
    bootstrap: bool = True

    def external_tables(self) -> List[Table]:
        selected: Dict[str, Table] = {}
        for table in self.tables:
            if table.kind is TableKind.EXTERNAL:
                selected[table.name] = table
            elif table.kind is TableKind.MANAGED:
                continue
            else:
                raise ValueError(f"Unknown table kind {table.kind!r}")
        return [selected[name] for name in sorted(selected)]


@dataclass
class ManifestWriteResult:
    """Outcome of a manifest write."""

    path: str
    written: bool
    entries: List[ManifestEntry] = field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [e.table_name for e in self.entries]


def write_manifest(
    snapshot: DumpSnapshot, output_path: str, storage: StorageBackend
) -> ManifestWriteResult:
    """Write the external table manifest of a dump.

    Args:
        snapshot: Tables in the dump's scope
        output_path: Full manifest path (see manifest_path)
        storage: Filesystem the dump lives on

    Returns:
        ManifestWriteResult; ``written`` is False when the scope has no
        EXTERNAL table and therefore no file was created

    Raises:
        EncodingError: a table name or location cannot be recorded
        StorageWriteError: the manifest could not be written
    """
    entries = []
    for table in snapshot.external_tables():
        if not table.location:
            raise EncodingError(
                "External table has no data location",
                database=snapshot.db_name,
                table=table.name,
            )
        entries.append(ManifestEntry(table.name, table.location))

    if not entries:
        logger.info(
            "No external tables in scope for %s; manifest not written",
            snapshot.db_name,
        )
        return ManifestWriteResult(path=output_path, written=False)

    content = "".join(f"{entry.to_line()}\n" for entry in entries)

    try:
        result = storage.write_bytes_atomic(output_path, content.encode("utf-8"))
    except OSError as exc:
        raise StorageWriteError(
            "Failed to write external table manifest",
            path=output_path,
            cause=exc,
            database=snapshot.db_name,
        ) from exc
    if not result.success:
        raise StorageWriteError(
            f"Failed to write external table manifest: {result.error}",
            path=output_path,
            database=snapshot.db_name,
        )

    logger.info(
        "Wrote external table manifest %s (%d tables)", output_path, len(entries)
    )
    return ManifestWriteResult(path=output_path, written=True, entries=entries)


def read_manifest(path: str, storage: StorageBackend) -> Optional[List[ManifestEntry]]:
    """Read a manifest, or return None when the dump has none.

    Raises:
        ManifestFormatError: the manifest is malformed
        StorageReadError: the manifest exists but could not be read
    """
    if not storage.exists(path):
        return None

    try:
        raw = storage.read_bytes(path)
    except OSError as exc:
        raise StorageReadError(
            "Failed to read external table manifest", path=path, cause=exc
        ) from exc

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ManifestFormatError("Manifest is not valid UTF-8", path=path) from exc

    entries: List[ManifestEntry] = []
    seen = set()
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    for number, line in enumerate(lines, start=1):
        entry = ManifestEntry.from_line(line, path=path, line_number=number)
        if entry.table_name in seen:
            raise ManifestFormatError(
                f"Duplicate manifest entry for table '{entry.table_name}'",
                path=path,
                line_number=number,
            )
        seen.add(entry.table_name)
        entries.append(entry)

    logger.debug("Read %d manifest entries from %s", len(entries), path)
    return entries

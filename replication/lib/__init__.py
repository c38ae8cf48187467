"""Replication library modules.

This package contains the data model, the dump and load machinery, and the
collaborators (metastore, storage) they run against.
"""

from replication.lib.config import (
    ReplicationOptions,
    ReplicationSettings,
    load_options_from_yaml,
)
from replication.lib.coordinator import (
    CycleResult,
    DumpResult,
    LoadResult,
    ReplicationCoordinator,
)
from replication.lib.dump import DumpMetadata, DumpType
from replication.lib.errors import (
    ConcurrentReplicationError,
    ConfigurationError,
    EncodingError,
    InconsistentReplicationStateError,
    ManifestFormatError,
    ObjectNotFoundError,
    ReplicationError,
    StorageReadError,
    StorageWriteError,
)
from replication.lib.events import EventLog, EventType, ReplicationEvent
from replication.lib.location import canonicalize, decode, encode
from replication.lib.locks import DatabaseLocks, file_lock
from replication.lib.logging import (
    JSONFormatter,
    ReplicationLogAdapter,
    replication_logger,
    setup_logging,
)
from replication.lib.manifest import (
    MANIFEST_FILE_NAME,
    DumpSnapshot,
    IncrementalScope,
    ManifestEntry,
    ManifestWriteResult,
    manifest_path,
    read_manifest,
    write_manifest,
)
from replication.lib.metastore import FileMetastore, InMemoryMetastore, Metastore
from replication.lib.model import Column, Database, Partition, Table, TableKind
from replication.lib.observability import CycleMetrics
from replication.lib.rebase import rebase
from replication.lib.reconciler import MetadataReconciler, ObjectState, ReconcileResult
from replication.lib.warehouse import Warehouse
from replication.lib.watermark import (
    delete_watermark,
    get_watermark,
    list_watermarks,
    save_watermark,
)

__all__ = [
    # Configuration
    "ReplicationOptions",
    "ReplicationSettings",
    "load_options_from_yaml",
    # Coordination
    "CycleResult",
    "DumpResult",
    "LoadResult",
    "ReplicationCoordinator",
    "DumpMetadata",
    "DumpType",
    "DatabaseLocks",
    "file_lock",
    # Errors
    "ConcurrentReplicationError",
    "ConfigurationError",
    "EncodingError",
    "InconsistentReplicationStateError",
    "ManifestFormatError",
    "ObjectNotFoundError",
    "ReplicationError",
    "StorageReadError",
    "StorageWriteError",
    # Events and model
    "EventLog",
    "EventType",
    "ReplicationEvent",
    "Column",
    "Database",
    "Partition",
    "Table",
    "TableKind",
    # Locations and manifests
    "canonicalize",
    "decode",
    "encode",
    "rebase",
    "MANIFEST_FILE_NAME",
    "DumpSnapshot",
    "IncrementalScope",
    "ManifestEntry",
    "ManifestWriteResult",
    "manifest_path",
    "read_manifest",
    "write_manifest",
    # Collaborators
    "FileMetastore",
    "InMemoryMetastore",
    "Metastore",
    "Warehouse",
    "MetadataReconciler",
    "ObjectState",
    "ReconcileResult",
    # Observability
    "CycleMetrics",
    "JSONFormatter",
    "ReplicationLogAdapter",
    "replication_logger",
    "setup_logging",
    # Checkpoints
    "delete_watermark",
    "get_watermark",
    "list_watermarks",
    "save_watermark",
]

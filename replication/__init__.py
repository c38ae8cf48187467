"""Warehouse replication with external table support.

A dump captures a primary database's metadata events and, when enabled, a
manifest of its external tables and their data locations. A load replays the
dump into a replica database, rebasing every external location under a
configured replica base directory.

Usage:
    python -m replication dump sales --primary primary.json
    python -m replication load sales_replica <dump_location> --replica replica.json
"""

from replication.lib.config import ReplicationOptions
from replication.lib.coordinator import ReplicationCoordinator

__all__ = [
    "ReplicationCoordinator",
    "ReplicationOptions",
]

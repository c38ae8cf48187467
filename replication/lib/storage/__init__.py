"""Storage backend abstraction for replication.

Provides a unified filesystem interface for dump artifacts, manifests and
external data directories: local filesystem and any fsspec filesystem
(HDFS, S3, in-memory, ...).

Usage:
    from replication.lib.storage import get_storage

    # Local filesystem
    storage = get_storage("./dumps/")
    storage = get_storage("file:///data/warehouse/")

    # Distributed filesystem
    storage = get_storage("hdfs://namenode:8020/repl/")
"""

from replication.lib.storage.base import FileInfo, StorageBackend, StorageResult
from replication.lib.storage.fsspec_backend import FsspecStorage
from replication.lib.storage.local import LocalStorage

__all__ = [
    "FileInfo",
    "StorageBackend",
    "StorageResult",
    "LocalStorage",
    "FsspecStorage",
    "get_storage",
    "parse_uri",
]


def parse_uri(path: str) -> tuple[str, str]:
    """Parse a storage URI into scheme and path.

    Args:
        path: Storage path (local path or URI)

    Returns:
        Tuple of (scheme, path) where scheme is 'local' for plain paths
        and file:// URIs, otherwise the URI protocol

    Examples:
        >>> parse_uri("./dumps/")
        ('local', './dumps/')
        >>> parse_uri("file:///warehouse/sales.db")
        ('local', '/warehouse/sales.db')
        >>> parse_uri("hdfs://nn:8020/warehouse/")
        ('hdfs', 'nn:8020/warehouse/')
    """
    if path.startswith("file://"):
        return ("local", path[len("file://"):])
    if "://" in path:
        scheme, _, rest = path.partition("://")
        return (scheme, rest)
    return ("local", path)


def get_storage(path: str = "", **options) -> StorageBackend:
    """Get the appropriate storage backend for a path.

    Automatically detects the storage type from the path prefix and
    returns the corresponding backend instance.

    Args:
        path: Storage path (local path or URI)
        **options: Backend-specific options (credentials, etc.)

    Returns:
        StorageBackend instance for the detected storage type

    Examples:
        >>> storage = get_storage("./dumps/")
        >>> storage = get_storage("hdfs://namenode:8020/repl/")
    """
    scheme, _ = parse_uri(path)

    if scheme == "local":
        return LocalStorage(path, **options)
    return FsspecStorage(path, **options)

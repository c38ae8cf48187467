"""Universal fsspec-based storage backend.

Provides a single storage backend that works with any fsspec-compatible
filesystem: HDFS, S3, Azure, GCS, in-memory and 40+ others. Warehouse
data locations on a distributed filesystem are reached through this
backend.
"""

from __future__ import annotations

import fnmatch
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import fsspec
from fsspec.spec import AbstractFileSystem

from replication.lib.storage.base import FileInfo, StorageBackend, StorageResult

logger = logging.getLogger(__name__)

__all__ = ["FsspecStorage", "get_fsspec_filesystem"]

# Object stores without real directories
_FLAT_PROTOCOLS = ("s3", "s3a", "gs", "gcs", "az", "abfs", "abfss")


def get_fsspec_filesystem(path: str, **storage_options: Any) -> AbstractFileSystem:
    """Get an fsspec filesystem for the given path.

    Args:
        path: Storage path with protocol prefix (hdfs://, s3://, memory://, etc.)
        **storage_options: Protocol-specific options (credentials, etc.)

    Returns:
        Configured fsspec filesystem instance

    Example:
        >>> fs = get_fsspec_filesystem("hdfs://namenode:8020/warehouse/")
        >>> fs.ls("/warehouse/sales.db")
    """
    if "://" in path:
        protocol = path.split("://")[0]
    else:
        protocol = "file"

    return fsspec.filesystem(protocol, **storage_options)


class FsspecStorage(StorageBackend):
    """Universal storage backend using fsspec.

    Example:
        >>> storage = FsspecStorage("hdfs://namenode:8020/repl/dumps/")
        >>> storage.exists("hdfs://namenode:8020/warehouse/sales.db/t1")

        >>> storage = FsspecStorage("memory://dumps/")
        >>> storage.write_text("_events.json", "[]")

    Environment Variables:
        S3:
            AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_DEFAULT_REGION

        HDFS:
            HADOOP_HOME, HADOOP_CONF_DIR (for pyarrow's libhdfs)
    """

    def __init__(self, base_path: str = "", **options: Any) -> None:
        """Initialize the fsspec storage backend.

        Args:
            base_path: Base path with protocol (e.g., hdfs://nn:8020/repl/)
            **options: Filesystem-specific options passed to fsspec
        """
        super().__init__(base_path, **options)
        self._fs: Optional[AbstractFileSystem] = None
        self._protocol = self._detect_protocol()

    def _detect_protocol(self) -> str:
        """Detect the protocol from the base path."""
        if "://" in self.base_path:
            return self.base_path.split("://")[0]
        return "file"

    @property
    def scheme(self) -> str:
        """Return the URI scheme for this backend."""
        return self._protocol

    @property
    def fs(self) -> AbstractFileSystem:
        """Lazy-load the filesystem."""
        if self._fs is None:
            self._fs = fsspec.filesystem(self._protocol, **self.options)
        return self._fs

    def _normalize_path(self, path: str) -> str:
        """Normalize a path, handling both relative and absolute paths."""
        if not path:
            return self.base_path.rstrip("/")

        if "://" in path or path.startswith("/"):
            return path

        base = self.base_path.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    def exists(self, path: str) -> bool:
        """Check if a path exists."""
        full_path = self._normalize_path(path)
        try:
            result: bool = self.fs.exists(full_path)
            return result
        except OSError as e:
            logger.debug("Error checking existence of %s: %s", full_path, e)
            return False

    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False,
    ) -> List[FileInfo]:
        """List files at a path."""
        full_path = self._normalize_path(path)

        try:
            if recursive:
                items = self.fs.find(full_path, detail=True)
            else:
                items = self.fs.ls(full_path, detail=True)
        except FileNotFoundError:
            return []

        file_items: List[tuple[str, Dict[str, Any]]] = []
        if isinstance(items, dict):
            file_items = list(items.items())
        else:
            for item in items:
                if isinstance(item, dict):
                    file_items.append((item.get("name", ""), item))
                else:
                    file_items.append((str(item), {"name": str(item), "type": "file", "size": 0}))

        files: List[FileInfo] = []
        for name, info in file_items:
            if info.get("type") == "directory":
                continue

            basename = name.split("/")[-1]
            if pattern and not fnmatch.fnmatch(basename, pattern):
                continue

            modified = info.get("mtime", info.get("LastModified"))
            if isinstance(modified, (int, float)):
                modified = datetime.fromtimestamp(modified)

            files.append(
                FileInfo(
                    path=name,
                    size=info.get("size", info.get("Size", 0)) or 0,
                    modified=modified if isinstance(modified, datetime) else None,
                )
            )

        return sorted(files, key=lambda f: f.path)

    def read_bytes(self, path: str) -> bytes:
        """Read file contents as bytes."""
        full_path = self._normalize_path(path)
        with self.fs.open(full_path, "rb") as f:
            result: bytes = f.read()
            return result

    def write_bytes(self, path: str, data: bytes) -> StorageResult:
        """Write bytes to a file."""
        full_path = self._normalize_path(path)

        try:
            if self._protocol == "file":
                self.fs.makedirs(self.fs._parent(full_path), exist_ok=True)

            with self.fs.open(full_path, "wb") as f:
                f.write(data)

            return StorageResult(
                success=True,
                path=full_path,
                files_written=[full_path],
                bytes_written=len(data),
            )
        except OSError as e:
            logger.error("Failed to write %s: %s", full_path, e)
            return StorageResult(
                success=False,
                path=full_path,
                error=str(e),
            )

    def rename(self, src: str, dst: str) -> StorageResult:
        """Move a file (server-side rename where the filesystem has one)."""
        src_path = self._normalize_path(src)
        dst_path = self._normalize_path(dst)

        try:
            if self.fs.exists(dst_path):
                self.fs.rm(dst_path)
            self.fs.mv(src_path, dst_path)
            info = self.fs.info(dst_path)
            return StorageResult(
                success=True,
                path=dst_path,
                files_written=[dst_path],
                bytes_written=info.get("size", info.get("Size", 0)) or 0,
            )
        except OSError as e:
            logger.error("Failed to rename %s to %s: %s", src_path, dst_path, e)
            return StorageResult(
                success=False,
                path=dst_path,
                error=str(e),
            )

    def delete(self, path: str) -> bool:
        """Delete a file or directory."""
        full_path = self._normalize_path(path)

        try:
            if self.fs.isdir(full_path):
                self.fs.rm(full_path, recursive=True)
            else:
                self.fs.rm(full_path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete %s: %s", full_path, e)
            return False

    def makedirs(self, path: str) -> None:
        """Create directories recursively."""
        full_path = self._normalize_path(path)

        if self._protocol in _FLAT_PROTOCOLS:
            return

        try:
            self.fs.makedirs(full_path, exist_ok=True)
        except OSError as e:
            logger.warning("Failed to create directory %s: %s", full_path, e)

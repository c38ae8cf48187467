"""Abstract base class for storage backends.

Defines the filesystem capability interface the replication core calls
into for dump artifacts, manifests and data-directory checks.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["StorageBackend", "StorageResult", "FileInfo"]


@dataclass
class FileInfo:
    """Information about a file in storage."""

    path: str
    size: int
    modified: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StorageResult:
    """Result of a storage operation."""

    success: bool
    path: str
    files_written: List[str] = field(default_factory=list)
    bytes_written: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "path": self.path,
            "files_written": self.files_written,
            "bytes_written": self.bytes_written,
            "error": self.error,
            "metadata": self.metadata,
        }


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Provides a unified interface for reading and writing files on different
    storage systems (local filesystem, HDFS, S3, in-memory, ...).

    Paths may be relative to ``base_path`` or absolute (a leading ``/`` or a
    ``scheme://`` prefix).

    Subclasses must implement all abstract methods.
    """

    def __init__(self, base_path: str = "", **options: Any) -> None:
        """Initialize the storage backend.

        Args:
            base_path: Base path for this storage backend
            **options: Backend-specific options
        """
        self.base_path = base_path
        self.options = options

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the URI scheme for this backend (e.g., 'local', 'hdfs')."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if a path exists.

        Args:
            path: Path to check (relative to base_path or absolute)

        Returns:
            True if path exists, False otherwise
        """
        pass

    @abstractmethod
    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False,
    ) -> List[FileInfo]:
        """List files at a path.

        Args:
            path: Path to list (relative to base_path)
            pattern: Optional glob pattern to filter files
            recursive: If True, list files recursively

        Returns:
            List of FileInfo objects
        """
        pass

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Read file contents as bytes.

        Args:
            path: Path to read (relative to base_path or absolute)

        Returns:
            File contents as bytes
        """
        pass

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> StorageResult:
        """Write bytes to a file.

        Args:
            path: Path to write (relative to base_path or absolute)
            data: Bytes to write

        Returns:
            StorageResult with operation details
        """
        pass

    @abstractmethod
    def rename(self, src: str, dst: str) -> StorageResult:
        """Move a file, replacing ``dst`` if it exists.

        Args:
            src: Source path
            dst: Destination path

        Returns:
            StorageResult with operation details
        """
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete a file or directory.

        Args:
            path: Path to delete

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def makedirs(self, path: str) -> None:
        """Create directories recursively.

        Args:
            path: Directory path to create
        """
        pass

    # Convenience methods (can be overridden for efficiency)

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        """Read file contents as text."""
        return self.read_bytes(path).decode(encoding)

    def write_text(
        self, path: str, data: str, encoding: str = "utf-8"
    ) -> StorageResult:
        """Write text to a file."""
        return self.write_bytes(path, data.encode(encoding))

    def write_bytes_atomic(self, path: str, data: bytes) -> StorageResult:
        """Write a file so readers see either nothing or the complete content.

        Writes to a hidden temporary sibling and renames it into place. The
        temporary file is removed when either step fails.

        Args:
            path: Final path of the file
            data: Bytes to write

        Returns:
            StorageResult for the final path
        """
        full_path = self.get_full_path(path)
        parent, sep, name = full_path.rpartition("/")
        tmp_path = f"{parent}{sep}.{name}.{uuid.uuid4().hex}.tmp"

        result = self.write_bytes(tmp_path, data)
        if not result.success:
            self.delete(tmp_path)
            return StorageResult(success=False, path=full_path, error=result.error)

        renamed = self.rename(tmp_path, full_path)
        if not renamed.success:
            self.delete(tmp_path)
            return renamed

        return StorageResult(
            success=True,
            path=renamed.path,
            files_written=[renamed.path],
            bytes_written=len(data),
        )

    def get_full_path(self, path: str) -> str:
        """Get the full path including base_path.

        Args:
            path: Relative path

        Returns:
            Full path with base_path prefix
        """
        if not path:
            return self.base_path

        # Handle absolute paths
        if "://" in path or path.startswith("/") or not self.base_path:
            return path

        base = self.base_path.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_path={self.base_path!r})"

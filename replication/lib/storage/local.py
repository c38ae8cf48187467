"""Local filesystem storage backend."""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from replication.lib.storage.base import FileInfo, StorageBackend, StorageResult

logger = logging.getLogger(__name__)

__all__ = ["LocalStorage"]


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Accepts plain paths as well as ``file://`` URIs, which is the form
    data locations take once canonicalized.

    Example:
        >>> storage = LocalStorage("./dumps/")
        >>> storage.write_text("repl_1/_events.json", "[]")
        >>> storage.exists("file:///tmp/warehouse/sales.db/t1")
        False
    """

    @property
    def scheme(self) -> str:
        return "local"

    def _resolve_path(self, path: str) -> Path:
        """Resolve a path or file:// URI to an absolute Path object."""
        full_path = self.get_full_path(path)
        if full_path.startswith("file://"):
            full_path = full_path[len("file://"):]
        elif full_path.startswith("file:"):
            full_path = full_path[len("file:"):]
        return Path(full_path).resolve()

    def exists(self, path: str) -> bool:
        """Check if a path exists."""
        return self._resolve_path(path).exists()

    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False,
    ) -> List[FileInfo]:
        """List files at a path."""
        resolved = self._resolve_path(path)

        if not resolved.exists() or not resolved.is_dir():
            return []

        files: List[FileInfo] = []

        if recursive:
            iterator = resolved.rglob("*")
        else:
            iterator = resolved.iterdir()

        for item in iterator:
            if item.is_file():
                if pattern and not fnmatch.fnmatch(item.name, pattern):
                    continue

                stat = item.stat()
                files.append(
                    FileInfo(
                        path=str(item.relative_to(resolved)),
                        size=stat.st_size,
                        modified=datetime.fromtimestamp(stat.st_mtime),
                    )
                )

        return sorted(files, key=lambda f: f.path)

    def read_bytes(self, path: str) -> bytes:
        """Read file contents as bytes."""
        return self._resolve_path(path).read_bytes()

    def write_bytes(self, path: str, data: bytes) -> StorageResult:
        """Write bytes to a file."""
        resolved = self._resolve_path(path)

        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_bytes(data)

            return StorageResult(
                success=True,
                path=str(resolved),
                files_written=[str(resolved)],
                bytes_written=len(data),
            )
        except OSError as e:
            logger.error("Failed to write %s: %s", resolved, e)
            return StorageResult(
                success=False,
                path=str(resolved),
                error=str(e),
            )

    def rename(self, src: str, dst: str) -> StorageResult:
        """Move a file with os.replace (atomic on POSIX filesystems)."""
        src_resolved = self._resolve_path(src)
        dst_resolved = self._resolve_path(dst)

        try:
            dst_resolved.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src_resolved, dst_resolved)
            return StorageResult(
                success=True,
                path=str(dst_resolved),
                files_written=[str(dst_resolved)],
                bytes_written=dst_resolved.stat().st_size,
            )
        except OSError as e:
            logger.error("Failed to rename %s to %s: %s", src_resolved, dst_resolved, e)
            return StorageResult(
                success=False,
                path=str(dst_resolved),
                error=str(e),
            )

    def delete(self, path: str) -> bool:
        """Delete a file or directory."""
        resolved = self._resolve_path(path)

        if not resolved.exists():
            return False

        try:
            if resolved.is_dir():
                shutil.rmtree(resolved)
            else:
                resolved.unlink()
            return True
        except OSError as e:
            logger.error("Failed to delete %s: %s", resolved, e)
            return False

    def makedirs(self, path: str) -> None:
        """Create directories recursively."""
        self._resolve_path(path).mkdir(parents=True, exist_ok=True)

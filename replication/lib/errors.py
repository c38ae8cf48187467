"""Structured exception hierarchy for replication.

Provides specific exception types for the failure modes of the dump/load
cycle, with rich context for debugging and troubleshooting.

Every collaborator failure is terminal for the current dump or load
invocation. Recovery happens at the cycle level by re-running the load
(or a later dump) from the last checkpointed watermark.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "ReplicationError",
    "EncodingError",
    "StorageWriteError",
    "StorageReadError",
    "InconsistentReplicationStateError",
    "ManifestFormatError",
    "ConfigurationError",
    "ObjectNotFoundError",
    "ConcurrentReplicationError",
]


class ReplicationError(Exception):
    """Base exception for all replication errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        database: Optional[str] = None,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.database = database
        self.table = table
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if database or table:
            context = f"{database or '?'}.{table or '?'}"
            parts.insert(0, f"[{context}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "database": self.database,
            "table": self.table,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class EncodingError(ReplicationError):
    """A data location could not be canonicalized, encoded or decoded.

    Raised only for malformed input; valid absolute locations always encode.
    """

    def __init__(
        self,
        message: str,
        *,
        location: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.location = location

        details = kwargs.pop("details", {})
        if location is not None:
            details["location"] = repr(location)

        super().__init__(message, details=details, **kwargs)


class _StorageError(ReplicationError):
    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class StorageWriteError(_StorageError):
    """Writing to the filesystem or metastore collaborator failed.

    No partial artifact is left visible when this is raised.
    """


class StorageReadError(_StorageError):
    """Reading from the filesystem or metastore collaborator failed."""


class InconsistentReplicationStateError(ReplicationError):
    """An event references an object in an unexpected state.

    Fatal for the load batch: the whole load is rolled back and the replica
    watermark is not advanced, so the load can be retried after
    investigation.
    """

    def __init__(
        self,
        message: str,
        *,
        event_id: Optional[int] = None,
        event_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.event_id = event_id
        self.event_type = event_type

        details = kwargs.pop("details", {})
        if event_id is not None:
            details["event_id"] = event_id
        if event_type:
            details["event_type"] = event_type

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "The replica watermark was not advanced. Inspect the replica "
                "metadata, then re-run the load with the same or a later dump."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ManifestFormatError(ReplicationError):
    """The external table manifest is malformed."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        line_number: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.line_number = line_number

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if line_number is not None:
            details["line"] = line_number

        super().__init__(message, details=details, **kwargs)


class ConfigurationError(ReplicationError):
    """Error in replication configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        if self.issues:
            issue_lines = "\n".join(f"  - {issue}" for issue in self.issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


class ObjectNotFoundError(ReplicationError):
    """A database, table or partition does not exist in the metastore."""


class ConcurrentReplicationError(ReplicationError):
    """Another dump or load already holds the lock for this database."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Only one dump and one load may run per database at a time. "
                "Wait for the running operation to finish."
            )
        super().__init__(message, suggestion=suggestion, **kwargs)

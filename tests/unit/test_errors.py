"""Tests for the replication exception hierarchy."""

import pytest

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


class TestReplicationError:
    """Tests for the base exception."""

    def test_message_only(self):
        error = ReplicationError("Something broke")
        assert str(error) == "Something broke"
        assert error.details == {}

    def test_context_prefix(self):
        error = ReplicationError("Missing", database="sales", table="t1")
        assert str(error).startswith("[sales.t1]")

    def test_partial_context(self):
        error = ReplicationError("Missing", database="sales")
        assert str(error).startswith("[sales.?]")

    def test_details_and_suggestion(self):
        error = ReplicationError("Failed", details={"rows": 3}, suggestion="Retry")
        text = str(error)
        assert "rows: 3" in text
        assert "Suggestion: Retry" in text

    def test_to_dict(self):
        error = ObjectNotFoundError("Table 't9' does not exist", database="sales", table="t9")
        assert error.to_dict() == {
            "error_type": "ObjectNotFoundError",
            "message": "Table 't9' does not exist",
            "database": "sales",
            "table": "t9",
            "details": {},
            "suggestion": None,
        }

    @pytest.mark.parametrize(
        "error_class",
        [
            EncodingError,
            StorageReadError,
            StorageWriteError,
            InconsistentReplicationStateError,
            ManifestFormatError,
            ConfigurationError,
            ObjectNotFoundError,
            ConcurrentReplicationError,
        ],
    )
    def test_hierarchy(self, error_class):
        assert issubclass(error_class, ReplicationError)


class TestSpecificErrors:
    """Tests for the context each subclass records."""

    def test_encoding_error_location(self):
        error = EncodingError("Bad location", location="rel/path")
        assert error.location == "rel/path"
        assert error.details["location"] == "'rel/path'"

    def test_storage_error_cause(self):
        cause = PermissionError("denied")
        error = StorageWriteError("Write failed", path="/dumps/x", cause=cause)
        assert error.cause is cause
        assert error.details == {
            "path": "/dumps/x",
            "cause": "denied",
            "cause_type": "PermissionError",
        }

    def test_inconsistent_state_defaults_suggestion(self):
        error = InconsistentReplicationStateError("Table missing", event_id=7, event_type="drop_table")
        assert error.event_id == 7
        assert error.details == {"event_id": 7, "event_type": "drop_table"}
        assert "watermark was not advanced" in error.suggestion

    def test_manifest_error_line(self):
        error = ManifestFormatError("Bad line", path="/d/_external_tables_info", line_number=3)
        assert error.details["line"] == 3

    def test_configuration_issues(self):
        error = ConfigurationError("Invalid options", issues=["a: bad", "b: worse"])
        assert "Issues found:" in str(error)
        assert "  - b: worse" in str(error)

    def test_concurrent_default_suggestion(self):
        error = ConcurrentReplicationError("Lock held", database="sales")
        assert error.suggestion.startswith("Only one dump and one load")

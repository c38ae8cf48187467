"""Tests for replication options and settings.

Tests cover:
- WITH-clause parsing and boolean strings
- Base directory validation and qualification
- YAML option files with environment expansion
- REPL_* environment settings
"""

import pytest
from pydantic import ValidationError

from replication.lib.config import (
    EXTERNAL_TABLE_BASE_DIR_KEY,
    INCLUDE_EXTERNAL_TABLES_KEY,
    INCREMENTAL_SCOPE_KEY,
    METADATA_ONLY_KEY,
    ReplicationOptions,
    ReplicationSettings,
    load_options_from_yaml,
)
from replication.lib.errors import ConfigurationError
from replication.lib.manifest import IncrementalScope


class TestReplicationOptions:
    """Tests for ReplicationOptions."""

    def test_defaults(self):
        options = ReplicationOptions()
        assert options.include_external_tables is False
        assert options.external_table_base_dir is None
        assert options.metadata_only is False
        assert options.incremental_scope is IncrementalScope.ALL_EXTERNAL

    @pytest.mark.parametrize("raw,expected", [("true", True), ("TRUE", True), ("1", True), ("no", False), ("off", False)])
    def test_bool_strings(self, raw, expected):
        options = ReplicationOptions.from_with_clause({INCLUDE_EXTERNAL_TABLES_KEY: raw})
        assert options.include_external_tables is expected

    def test_invalid_bool(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ReplicationOptions.from_with_clause({INCLUDE_EXTERNAL_TABLES_KEY: "maybe"})
        assert exc_info.value.issues

    def test_with_clause_keys(self):
        """Should map WITH keys, stripping quotes."""
        options = ReplicationOptions.from_with_clause(
            {
                f"'{INCLUDE_EXTERNAL_TABLES_KEY}'": "'true'",
                EXTERNAL_TABLE_BASE_DIR_KEY: "hdfs://replica:8020/ext",
                METADATA_ONLY_KEY: "false",
                INCREMENTAL_SCOPE_KEY: "Touched",
            }
        )
        assert options.include_external_tables
        assert options.external_table_base_dir == "hdfs://replica:8020/ext"
        assert options.incremental_scope is IncrementalScope.TOUCHED

    def test_field_names_accepted(self):
        options = ReplicationOptions.from_with_clause({"metadata_only": "true"})
        assert options.metadata_only

    def test_unknown_keys_ignored(self, caplog):
        options = ReplicationOptions.from_with_clause({"hive.repl.unknown": "x"})
        assert options == ReplicationOptions()
        assert "hive.repl.unknown" in caplog.text

    def test_base_clause_is_extended(self):
        base = ReplicationOptions(include_external_tables=True)
        options = ReplicationOptions.from_with_clause({METADATA_ONLY_KEY: "true"}, base=base)
        assert options.include_external_tables
        assert options.metadata_only

    def test_relative_base_dir_rejected(self):
        with pytest.raises(ConfigurationError):
            ReplicationOptions.create({"external_table_base_dir": "relative/dir"})

    def test_blank_base_dir_is_none(self):
        assert ReplicationOptions(external_table_base_dir="  ").external_table_base_dir is None

    def test_resolved_base_dir_qualifies_path(self):
        options = ReplicationOptions(external_table_base_dir="/replica_base", default_fs="hdfs://replica:8020")
        assert options.resolved_base_dir() == "hdfs://replica:8020/replica_base"

    def test_resolved_base_dir_with_default_file_fs(self):
        options = ReplicationOptions(external_table_base_dir="/replica_base")
        assert options.resolved_base_dir() == "file:///replica_base"

    def test_resolved_base_dir_keeps_uri(self):
        options = ReplicationOptions(external_table_base_dir="s3a://bucket/base")
        assert options.resolved_base_dir() == "s3a://bucket/base"

    def test_merged_ignores_none(self):
        options = ReplicationOptions(metadata_only=True).merged(metadata_only=None, include_external_tables=True)
        assert options.metadata_only
        assert options.include_external_tables

    def test_frozen(self):
        options = ReplicationOptions()
        with pytest.raises(ValidationError):
            options.metadata_only = True


class TestLoadOptionsFromYaml:
    """Tests for load_options_from_yaml()."""

    def test_replication_section(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REPLICA_NN", "hdfs://replica-nn:8020")
        path = tmp_path / "repl.yaml"
        path.write_text(
            "replication:\n"
            "  include_external_tables: true\n"
            "  external_table_base_dir: ${REPLICA_NN}/replica_external_base\n"
            "  incremental_scope: touched\n"
        )

        options = load_options_from_yaml(path)

        assert options.include_external_tables
        assert options.external_table_base_dir == "hdfs://replica-nn:8020/replica_external_base"
        assert options.incremental_scope is IncrementalScope.TOUCHED

    def test_top_level_with_keys(self, tmp_path):
        path = tmp_path / "repl.yaml"
        path.write_text(f'"{METADATA_ONLY_KEY}": "true"\n')
        assert load_options_from_yaml(path).metadata_only

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_options_from_yaml(path) == ReplicationOptions()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_options_from_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("replication: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_options_from_yaml(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_options_from_yaml(path)

    def test_reference_falls_back_to_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("REPLICA_NN", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("REPLICA_NN=hdfs://from-dotenv:8020\n")
        path = tmp_path / "repl.yaml"
        path.write_text("external_table_base_dir: ${REPLICA_NN}/base\n")

        options = load_options_from_yaml(path, env_file=env_file)

        assert options.external_table_base_dir == "hdfs://from-dotenv:8020/base"

    def test_environment_wins_over_env_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REPLICA_NN", "hdfs://exported:8020")
        env_file = tmp_path / ".env"
        env_file.write_text("REPLICA_NN=hdfs://from-dotenv:8020\n")
        path = tmp_path / "repl.yaml"
        path.write_text("external_table_base_dir: ${REPLICA_NN}/base\n")

        options = load_options_from_yaml(path, env_file=env_file)

        assert options.external_table_base_dir == "hdfs://exported:8020/base"

    def test_unset_reference(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "repl.yaml"
        path.write_text("replication:\n  external_table_base_dir: ${NOT_SET_ANYWHERE}/base\n")

        with pytest.raises(ConfigurationError, match="NOT_SET_ANYWHERE"):
            load_options_from_yaml(path, env_file=None)

    def test_bare_dollar_is_literal(self, tmp_path):
        path = tmp_path / "repl.yaml"
        path.write_text("external_table_base_dir: /base/$literal\n")
        assert load_options_from_yaml(path).external_table_base_dir == "/base/$literal"


class TestReplicationSettings:
    """Tests for ReplicationSettings."""

    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

    def test_defaults(self):
        settings = ReplicationSettings()
        assert settings.dump_base == "./repl_dumps"
        assert settings.state_dir == ".state"
        assert settings.lock_dir is None
        assert settings.log_level == "INFO"

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("REPL_DUMP_BASE", "/data/dumps")
        monkeypatch.setenv("REPL_INCLUDE_EXTERNAL_TABLES", "true")
        monkeypatch.setenv("REPL_EXTERNAL_TABLE_BASE_DIR", "/replica_base")
        monkeypatch.setenv("REPL_LOG_LEVEL", "debug")

        settings = ReplicationSettings()
        options = settings.to_options()

        assert settings.dump_base == "/data/dumps"
        assert settings.log_level == "DEBUG"
        assert options.include_external_tables
        assert options.external_table_base_dir == "/replica_base"

    def test_from_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("REPL_LOCK_TIMEOUT=5\n")
        assert ReplicationSettings().lock_timeout == 5.0

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("REPL_LOG_FORMAT", "xml")
        with pytest.raises(ValueError):
            ReplicationSettings()

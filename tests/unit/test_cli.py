"""Tests for the repl command line interface.

Tests cover:
- dump, load, status and cycle over JSON metastore files
- --with and --config option layering
- Exit codes for replication and argument errors
"""

import json

import pytest

from replication import __main__ as cli
from replication.lib.metastore import FileMetastore
from replication.lib.model import Column
from replication.lib.warehouse import Warehouse


@pytest.fixture(autouse=True)
def quiet(tmp_path, monkeypatch):
    """Run in an isolated directory without reconfiguring root logging."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def primary_file(tmp_path):
    path = str(tmp_path / "primary.json")
    warehouse = Warehouse(FileMetastore(path), warehouse_root=f"file://{tmp_path}/warehouse")
    warehouse.create_database("repl_src")
    warehouse.create_table("repl_src", "t1", [Column("a", "int")], external=True)
    warehouse.insert("repl_src", "t1", [[1]])
    warehouse.create_table("repl_src", "m1", [Column("a", "int")])
    return path


def run(capsys, *argv):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if code == 0 else None)


class TestParseWithPairs:
    """Tests for parse_with_pairs()."""

    def test_pairs(self):
        assert cli.parse_with_pairs(["a=1", " b = x=y"]) == {"a": "1", "b": " x=y"}

    def test_missing_separator(self):
        with pytest.raises(cli.ConfigurationError):
            cli.parse_with_pairs(["novalue"])


class TestCommands:
    """End-to-end command tests."""

    def test_dump_load_status(self, capsys, primary_file, tmp_path):
        replica_file = str(tmp_path / "replica.json")

        code, dumped = run(
            capsys,
            "dump",
            "repl_src",
            "--primary",
            primary_file,
            "--dump-base",
            str(tmp_path / "dumps"),
            "--with",
            "hive.repl.include.external.tables=true",
        )
        assert code == 0
        assert dumped["bootstrap"] is True
        assert dumped["external_tables"] == ["t1"]

        code, loaded = run(
            capsys,
            "load",
            "repl_dst",
            dumped["dump_location"],
            "--replica",
            replica_file,
            "--with",
            "hive.repl.include.external.tables=true",
            "--with",
            f"hive.repl.replica.external.table.base.dir={tmp_path}/replica_base",
        )
        assert code == 0
        assert loaded["watermark"] == dumped["last_replication_id"]
        assert loaded["manifest_found"] is True

        replica = FileMetastore(replica_file)
        assert replica.list_tables("repl_dst") == ["m1", "t1"]
        assert replica.get_table("repl_dst", "t1").location.startswith(f"file://{tmp_path}/replica_base/")

        code, status = run(capsys, "status", "repl_dst", "--replica", replica_file)
        assert status == {"database": "repl_dst", "last_replication_id": dumped["last_replication_id"]}

    def test_status_unknown_database(self, capsys, tmp_path):
        code, status = run(capsys, "status", "nope", "--replica", str(tmp_path / "replica.json"))
        assert code == 0
        assert status["last_replication_id"] is None

    def test_cycle_uses_config_file(self, capsys, primary_file, tmp_path):
        config = tmp_path / "repl.yaml"
        config.write_text("replication:\n  include_external_tables: true\n")
        argv = [
            "cycle",
            "repl_src",
            "repl_dst",
            "--primary",
            primary_file,
            "--replica",
            str(tmp_path / "replica.json"),
            "--config",
            str(config),
        ]

        code, first = run(capsys, *argv)
        assert code == 0
        assert first["bootstrap"] is True

        warehouse = Warehouse(FileMetastore(primary_file), warehouse_root=f"file://{tmp_path}/warehouse")
        warehouse.insert("repl_src", "t1", [[2]])

        code, second = run(capsys, *argv)
        assert second["bootstrap"] is False
        assert second["events_dumped"] == 1
        assert second["watermark"] == first["watermark"] + 1


class TestErrors:
    """Tests for exit codes."""

    def test_bad_with_pair(self, capsys, primary_file):
        code = cli.main(["dump", "repl_src", "--primary", primary_file, "--with", "novalue"])
        assert code == 1
        assert "Invalid --with argument" in capsys.readouterr().err

    def test_unknown_database(self, capsys, tmp_path):
        code, _ = run(capsys, "dump", "nope", "--primary", str(tmp_path / "primary.json"))
        assert code == 1

    def test_invalid_option_value(self, capsys, primary_file):
        code, _ = run(
            capsys, "dump", "repl_src", "--primary", primary_file, "--with", "hive.repl.include.external.tables=maybe"
        )
        assert code == 1

    def test_missing_subcommand(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2

    def test_invalid_settings(self, monkeypatch):
        monkeypatch.setenv("REPL_LOG_LEVEL", "LOUD")
        assert cli.main(["status", "x", "--replica", "r.json"]) == 2

"""CLI entry point for external table replication.

Usage:
    python -m replication dump sales --primary ./primary.json --with hive.repl.include.external.tables=true
    python -m replication load sales_replica ./repl_dumps/sales_42_1a2b3c4d --replica ./replica.json
    python -m replication status sales_replica --replica ./replica.json
    python -m replication cycle sales sales_replica --primary ./primary.json --replica ./replica.json

Metastores are JSON documents (see FileMetastore). Defaults for every option
come from REPL_* environment variables or a .env file, then --config, then
--with pairs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from replication.lib.config import (
    ReplicationOptions,
    ReplicationSettings,
    load_options_from_yaml,
)
from replication.lib.coordinator import ReplicationCoordinator
from replication.lib.errors import ConfigurationError, ReplicationError
from replication.lib.logging import setup_logging
from replication.lib.metastore import FileMetastore, InMemoryMetastore

logger = logging.getLogger(__name__)


def parse_with_pairs(pairs: Optional[List[str]]) -> Dict[str, str]:
    """Parse ``key=value`` arguments of --with."""
    result: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(
                f"Invalid --with argument '{pair}'",
                field="with",
                value=pair,
                suggestion="Use --with key=value",
            )
        result[key.strip()] = value
    return result


def resolve_options(args: argparse.Namespace, settings: ReplicationSettings) -> ReplicationOptions:
    options = settings.to_options()
    if args.config:
        options = load_options_from_yaml(args.config, base=options)
    overrides = parse_with_pairs(args.with_pairs)
    if overrides:
        options = ReplicationOptions.from_with_clause(overrides, base=options)
    return options


def build_coordinator(args: argparse.Namespace, settings: ReplicationSettings) -> ReplicationCoordinator:
    primary_path = getattr(args, "primary", None)
    replica_path = getattr(args, "replica", None)
    # Commands that only touch one side get an empty in-memory stand-in for the other
    primary = FileMetastore(primary_path) if primary_path else InMemoryMetastore()
    replica = FileMetastore(replica_path) if replica_path else InMemoryMetastore()
    return ReplicationCoordinator(
        primary,
        replica,
        dump_base=args.dump_base or settings.dump_base,
        lock_dir=settings.lock_dir,
        lock_timeout=settings.lock_timeout,
        state_dir=settings.state_dir,
    )


def print_result(payload: Dict[str, object]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_dump(args: argparse.Namespace, settings: ReplicationSettings) -> int:
    options = resolve_options(args, settings)
    coordinator = build_coordinator(args, settings)
    result = coordinator.dump(args.database, from_watermark=args.from_watermark, options=options)
    print_result(
        {
            "dump_location": result.dump_location,
            "last_replication_id": result.last_replication_id,
            "bootstrap": result.bootstrap,
            "event_count": result.event_count,
            "manifest_path": result.manifest_path,
            "external_tables": result.external_tables,
        }
    )
    return 0


def cmd_load(args: argparse.Namespace, settings: ReplicationSettings) -> int:
    options = resolve_options(args, settings)
    coordinator = build_coordinator(args, settings)
    result = coordinator.load_dump(args.database, args.dump_location, options=options)
    print_result(
        {
            "target_db": result.target_db,
            "watermark": result.watermark,
            "manifest_found": result.manifest_found,
            **result.reconcile.to_dict(),
        }
    )
    return 0


def cmd_status(args: argparse.Namespace, settings: ReplicationSettings) -> int:
    coordinator = build_coordinator(args, settings)
    watermark = coordinator.status(args.database)
    print_result({"database": args.database, "last_replication_id": watermark})
    return 0


def cmd_cycle(args: argparse.Namespace, settings: ReplicationSettings) -> int:
    options = resolve_options(args, settings)
    coordinator = build_coordinator(args, settings)
    result = coordinator.run_cycle(args.source, args.target, options=options)
    print_result(
        {
            "dump_location": result.dump.dump_location,
            "bootstrap": result.dump.bootstrap,
            "events_dumped": result.dump.event_count,
            "watermark": result.load.watermark,
            **result.load.reconcile.to_dict(),
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repl",
        description="Replicate warehouse databases, including external tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Bootstrap dump including external tables
    repl dump sales --primary primary.json --with hive.repl.include.external.tables=true

    # Load it, rebasing external locations under /replica_external_base
    repl load sales_replica ./repl_dumps/sales_42_1a2b3c4d --replica replica.json \\
        --with hive.repl.include.external.tables=true \\
        --with hive.repl.replica.external.table.base.dir=/replica_external_base

    # Incremental cycle from the last checkpoint
    repl cycle sales sales_replica --primary primary.json --replica replica.json --config repl.yaml
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument("--log-file", help="Write logs to a file in addition to console")

    options_parent = argparse.ArgumentParser(add_help=False)
    options_parent.add_argument("--config", help="YAML file with replication options")
    options_parent.add_argument(
        "--with",
        dest="with_pairs",
        action="append",
        metavar="KEY=VALUE",
        help="Replication option, as in a WITH clause (repeatable)",
    )
    options_parent.add_argument("--dump-base", help="Directory new dumps are written under")

    sub = parser.add_subparsers(dest="command", required=True)

    dump = sub.add_parser("dump", parents=[options_parent], help="Dump a primary database")
    dump.add_argument("database", help="Primary database name")
    dump.add_argument("--primary", required=True, help="Primary metastore JSON file")
    dump.add_argument(
        "--from",
        dest="from_watermark",
        type=int,
        help="Dump events after this replication id (bootstrap when omitted)",
    )
    dump.set_defaults(handler=cmd_dump)

    load = sub.add_parser("load", parents=[options_parent], help="Load a dump into a replica database")
    load.add_argument("database", help="Replica database name")
    load.add_argument("dump_location", help="Dump directory written by 'repl dump'")
    load.add_argument("--replica", required=True, help="Replica metastore JSON file")
    load.set_defaults(handler=cmd_load)

    status = sub.add_parser("status", parents=[options_parent], help="Show a replica database's watermark")
    status.add_argument("database", help="Replica database name")
    status.add_argument("--replica", required=True, help="Replica metastore JSON file")
    status.set_defaults(handler=cmd_status)

    cycle = sub.add_parser("cycle", parents=[options_parent], help="Dump and load from the last checkpoint")
    cycle.add_argument("source", help="Primary database name")
    cycle.add_argument("target", help="Replica database name")
    cycle.add_argument("--primary", required=True, help="Primary metastore JSON file")
    cycle.add_argument("--replica", required=True, help="Replica metastore JSON file")
    cycle.set_defaults(handler=cmd_cycle)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ReplicationSettings()
    except ValueError as e:
        print(f"Error: invalid REPL_* settings: {e}", file=sys.stderr)
        return 2

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_log or settings.log_format == "json",
        log_file=args.log_file or settings.log_file,
        level=settings.log_level,
    )

    try:
        return args.handler(args, settings)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except ReplicationError as e:
        logger.error("%s failed: %s", args.command, e.message, extra={"error": e.to_dict()})
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

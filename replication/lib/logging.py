"""Logging for dump and load runs.

Records logged through :func:`replication_logger` carry the database, the
phase (``dump`` or ``load``) and, once it is known, the dump location. The
JSON formatter lifts those fields to the top level of each line, so log
aggregation can filter by database or dump without parsing messages.

Example:
    >>> log = replication_logger(__name__, db="sales", phase="dump")
    >>> log = log.bind(dump_location="/repl/dumps/sales_42_1a2b3c4d")
    >>> log.metric("events_dumped", 17, unit="events")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

__all__ = [
    "CONTEXT_FIELDS",
    "JSONFormatter",
    "ReplicationLogAdapter",
    "replication_logger",
    "setup_logging",
]

# Written as top-level keys of a JSON line; anything else goes under "extra"
CONTEXT_FIELDS = (
    "db",
    "phase",
    "dump_location",
    "metric_name",
    "metric_value",
    "metric_unit",
    "error",
)

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Format each record as a single JSON object.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123456Z", "level": "INFO",
         "logger": "replication.lib.coordinator",
         "message": "Loaded /repl/dumps/sales_42_1a2b3c4d into sales_replica; watermark now 42",
         "db": "sales_replica", "phase": "load",
         "dump_location": "/repl/dumps/sales_42_1a2b3c4d",
         "extra": {"phase_apply_seconds": 0.012}}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        data: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if key in CONTEXT_FIELDS:
                data[key] = value
            else:
                extra[key] = value
        if extra:
            data["extra"] = extra

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class ReplicationLogAdapter(logging.LoggerAdapter):
    """Adds a run's replication context to every record it logs.

    Fields passed with ``extra=`` on a call win over the bound context.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra or {})

    def bind(self, **context: Any) -> "ReplicationLogAdapter":
        """Return a new adapter with ``context`` added to this one's."""
        return ReplicationLogAdapter(self.logger, {**self.context, **context})

    def metric(self, name: str, value: Any, unit: Optional[str] = None) -> None:
        """Log one run metric, e.g. ``events_applied``."""
        fields: Dict[str, Any] = {"metric_name": name, "metric_value": value}
        if unit:
            fields["metric_unit"] = unit
        self.info("%s=%s", name, value, extra=fields)


def replication_logger(name: str, db: str, phase: str, **context: Any) -> ReplicationLogAdapter:
    return ReplicationLogAdapter(logging.getLogger(name), {"db": db, "phase": phase, **context})


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
    level: str = "INFO",
) -> None:
    """Configure the root logger for a ``repl`` invocation.

    Logs go to stderr; stdout carries only command results.

    Args:
        verbose: Log at DEBUG, whatever ``level`` says
        json_format: One JSON object per line (see :class:`JSONFormatter`)
        log_file: Also append logs to this file
        level: Level name from ``REPL_LOG_LEVEL``
    """
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=resolved, handlers=handlers, force=True)
    logging.getLogger("fsspec").setLevel(max(resolved, logging.WARNING))

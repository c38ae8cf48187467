"""Watermark checkpoints for replication cycles.

A checkpoint records the last replication id loaded from a source database
into a target database, so the next cycle dumps only newer events.

Checkpoints are stored as JSON files in a state directory.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from replication.lib.model import normalize_name

logger = logging.getLogger(__name__)

__all__ = ["delete_watermark", "get_watermark", "list_watermarks", "save_watermark"]

# Default state directory - can be overridden via environment variable
DEFAULT_STATE_DIR = ".state"

StateDir = Optional[Union[str, Path]]


def _get_state_dir(state_dir: StateDir = None) -> Path:
    if state_dir is not None:
        return Path(state_dir)
    return Path(os.environ.get("REPL_STATE_DIR", DEFAULT_STATE_DIR))


def _get_watermark_path(source: str, target: str, state_dir: StateDir = None) -> Path:
    name = f"{normalize_name(source)}__{normalize_name(target)}_watermark.json"
    return _get_state_dir(state_dir) / name


def get_watermark(source: str, target: str, state_dir: StateDir = None) -> Optional[int]:
    """Get the last loaded replication id for a source/target pair.

    Returns:
        Last checkpointed watermark, or None if no cycle has completed

    Example:
        >>> last = get_watermark("sales", "sales_replica")
        >>> if last is None:
        ...     print("Next cycle bootstraps")
    """
    path = _get_watermark_path(source, target, state_dir)

    if not path.exists():
        logger.debug("No watermark found for %s -> %s", source, target)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        value = int(data["last_replication_id"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning("Invalid watermark file for %s -> %s: %s", source, target, e)
        return None

    logger.debug(
        "Found watermark for %s -> %s: %s (updated %s)",
        source,
        target,
        value,
        data.get("updated_at", "unknown"),
    )
    return value


def save_watermark(
    source: str,
    target: str,
    value: int,
    state_dir: StateDir = None,
    dump_location: Optional[str] = None,
) -> Path:
    """Checkpoint a watermark after a successful load."""
    directory = _get_state_dir(state_dir)
    directory.mkdir(parents=True, exist_ok=True)

    path = _get_watermark_path(source, target, state_dir)
    data: Dict[str, Any] = {
        "source": normalize_name(source),
        "target": normalize_name(target),
        "last_replication_id": int(value),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if dump_location:
        data["dump_location"] = dump_location

    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)
    logger.info("Saved watermark for %s -> %s: %s", source, target, value)
    return path


def delete_watermark(source: str, target: str, state_dir: StateDir = None) -> bool:
    """Delete a checkpoint so the next cycle bootstraps.

    Returns:
        True if the watermark was deleted, False if it didn't exist
    """
    path = _get_watermark_path(source, target, state_dir)

    if path.exists():
        path.unlink()
        logger.info("Deleted watermark for %s -> %s", source, target)
        return True

    return False


def list_watermarks(state_dir: StateDir = None) -> Dict[str, Dict[str, Any]]:
    """List stored checkpoints keyed by ``"source->target"``."""
    directory = _get_state_dir(state_dir)

    if not directory.exists():
        return {}

    watermarks = {}
    for path in sorted(directory.glob("*_watermark.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("Invalid watermark file %s: %s", path, e)
            continue
        key = f"{data.get('source', 'unknown')}->{data.get('target', 'unknown')}"
        watermarks[key] = data

    return watermarks

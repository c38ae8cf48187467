"""Relocation of external data locations under a replica base directory.

With no base configured the replica points at exactly the same location
as the primary. That is only safe when both clusters share a filesystem
namespace.

With a base configured, the source location's scheme and authority are
replaced by the base's, and the source's full absolute path is appended
to the base path:

    >>> rebase("hdfs://primary:8020/warehouse/sales.db/t2/country=us",
    ...        "hdfs://replica:8020/replica_external_base")
    'hdfs://replica:8020/replica_external_base/warehouse/sales.db/t2/country=us'

Everything after the authority is carried over verbatim, so ``?`` and ``#``
in a path are data, not a query or fragment.

Partitions are rebased from their own location, never from the table's
rebased location, so custom partition locations outside the table tree
keep their own path under the base.
"""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlsplit

__all__ = ["is_rebased_under", "rebase"]


def _split_raw(location: str) -> Tuple[str, str]:
    """Split a location into its ``scheme://authority`` prefix and raw path."""
    scheme = urlsplit(location).scheme
    if not scheme:
        return "", location
    head = location[: len(scheme)]
    if location.startswith("//", len(scheme) + 1):
        rest = location[len(scheme) + 3 :]
        cut = len(rest)
        for sep in "/?#":
            index = rest.find(sep)
            if index != -1:
                cut = min(cut, index)
        return f"{head}://{rest[:cut]}", rest[cut:]
    return f"{head}:", location[len(scheme) + 1 :]


def rebase(source_location: str, configured_base: Optional[str]) -> str:
    """Compute the replica location of a table or partition.

    Args:
        source_location: Absolute data location on the primary
        configured_base: Replica base directory, or None to keep the
            source location unchanged

    Returns:
        The effective replica location
    """
    if not configured_base:
        return source_location

    prefix, base_path = _split_raw(configured_base)
    _, source_path = _split_raw(source_location)
    if not source_path.startswith("/"):
        source_path = f"/{source_path}"

    return f"{prefix}{base_path.rstrip('/')}{source_path}"


def is_rebased_under(location: str, configured_base: str) -> bool:
    """Return True if ``location`` lies strictly under ``configured_base``."""
    prefix, base_path = _split_raw(configured_base)
    loc_prefix, loc_path = _split_raw(location)
    if prefix != loc_prefix:
        return False
    return loc_path.startswith(f"{base_path.rstrip('/')}/")

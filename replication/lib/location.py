"""Data location canonicalization and manifest-safe encoding.

Locations are stored as absolute, fully-qualified URIs (scheme + authority +
path). In the external table manifest each location is written as the
standard base64 of its UTF-8 bytes, which never contains the ``,`` field
separator or the newline record separator.

Example:
    >>> canonicalize("/warehouse/sales.db/t1")
    'file:///warehouse/sales.db/t1'
    >>> encode("hdfs://nn:8020/warehouse/sales.db/t1")
    'aGRmczovL25uOjgwMjAvd2FyZWhvdXNlL3NhbGVzLmRiL3Qx'
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Optional
from urllib.parse import urlsplit

from replication.lib.errors import EncodingError

__all__ = [
    "DEFAULT_FS",
    "canonicalize",
    "decode",
    "encode",
    "join_location",
    "location_path",
]

DEFAULT_FS = "file://"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _check_location(location: object) -> str:
    if not isinstance(location, str):
        raise EncodingError(
            f"Location must be a string, got {type(location).__name__}",
            location=None if location is None else str(location),
        )
    if not location.strip():
        raise EncodingError("Location is empty", location=location)
    if _CONTROL_CHARS.search(location):
        raise EncodingError(
            "Location contains control characters", location=location
        )
    return location


def _split(location: str):
    try:
        return urlsplit(location)
    except ValueError as exc:
        raise EncodingError(f"Malformed location URI: {exc}", location=location) from exc


def canonicalize(location: str, default_fs: Optional[str] = None) -> str:
    """Return the absolute, fully-qualified form of a location.

    A location that already carries a scheme is returned as-is (with an
    empty path normalized to ``/``). A bare absolute path is qualified with
    ``default_fs`` (``file://`` unless given).

    Raises:
        EncodingError: for empty, relative or otherwise malformed locations
    """
    location = _check_location(location)
    parts = _split(location)

    if parts.scheme:
        if not parts.path:
            return location.rstrip("/") + "/"
        if not parts.path.startswith("/"):
            raise EncodingError(
                "Location path must be absolute", location=location
            )
        return location

    if not location.startswith("/"):
        raise EncodingError(
            "Relative locations cannot be replicated; use an absolute path",
            location=location,
            suggestion="Qualify the location with a scheme or a leading '/'",
        )

    raw_fs = default_fs or DEFAULT_FS
    fs = raw_fs.rstrip("/")
    if fs.endswith(":") and "//" in raw_fs:
        fs = f"{fs}//"
    if "://" not in fs and not fs.endswith(":"):
        raise EncodingError("Default filesystem must be a URI prefix", location=default_fs)
    return f"{fs}{location}"


def encode(location: str) -> str:
    """Encode an absolute location for single-line, comma-delimited storage.

    The location is encoded verbatim so that ``decode(encode(x)) == x``.
    """
    location = _check_location(location)
    parts = _split(location)
    if parts.scheme:
        if parts.path and not parts.path.startswith("/"):
            raise EncodingError("Location path must be absolute", location=location)
    elif not location.startswith("/"):
        raise EncodingError("Location must be absolute", location=location)

    return base64.b64encode(location.encode("utf-8")).decode("ascii")


def decode(token: str) -> str:
    """Decode a location produced by :func:`encode`."""
    if not isinstance(token, str) or not token:
        raise EncodingError("Encoded location is empty", location=token)
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise EncodingError(
            f"Invalid encoded location: {exc}", location=token
        ) from exc


def location_path(location: str) -> str:
    """Return only the path component of a location URI."""
    return _split(location).path


def join_location(base: str, *parts: str) -> str:
    """Join path segments onto a location without doubling separators."""
    suffix = "/".join(p.strip("/") for p in parts if p and p.strip("/"))
    if not suffix:
        return base
    return f"{base.rstrip('/')}/{suffix}"

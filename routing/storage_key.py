"""
Object key construction: `{namespace}/{YYYY}/{MM}/{DD}/{filename}`.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

_DISALLOWED = re.compile(r"[^A-Za-z0-9._()-]")
_FILENAME_TIMESTAMP = re.compile(r"_(\d{8})_(\d{6})")


def sanitise_filename(filename: str) -> str:
    """Strip directory components and replace disallowed characters with '_'."""
    base = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _DISALLOWED.sub("_", base)
    if cleaned in ("", ".", ".."):
        return "_"
    return cleaned


def _as_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def build_storage_key(namespace: str, filename: str, timestamp: datetime) -> str:
    """
    >>> build_storage_key("cuit=33712152449", "test.pdf",
    ...                   datetime(2025, 1, 26, 12, 34, 56, tzinfo=timezone.utc))
    'cuit=33712152449/2025/01/26/test.pdf'
    """
    ts = _as_utc(timestamp)
    parts = [
        f"{ts.year:04d}",
        f"{ts.month:02d}",
        f"{ts.day:02d}",
        sanitise_filename(filename),
    ]
    ns = (namespace or "").strip("/")
    if ns:
        parts.insert(0, ns)
    return "/".join(parts)


def add_fingerprint_suffix(filename: str, fingerprint: str) -> str:
    """Append `_<first 8 hex>` before the extension."""
    path = PurePosixPath(filename)
    return f"{path.stem}_{fingerprint[:8]}{path.suffix}"


def timestamp_from_filename(filename: str) -> Optional[datetime]:
    """Parse `prefix_YYYYMMDD_HHMMSS...` into a UTC datetime, if present."""
    match = _FILENAME_TIMESTAMP.search(filename or "")
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group(1) + match.group(2), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


__all__ = [
    "sanitise_filename",
    "build_storage_key",
    "add_fingerprint_suffix",
    "timestamp_from_filename",
]

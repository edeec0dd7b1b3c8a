#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tenant prefix map: an immutable, versioned snapshot of
`filename prefix -> tenant descriptor`, and a holder that swaps whole
snapshots on reload.

Readers call `holder.current()` and use the returned snapshot for the rest of
their operation; a reload never mutates a snapshot in place.
"""
from __future__ import annotations

import itertools
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from types import MappingProxyType
from typing import Any, Mapping, Optional

from axp_exceptions import ConfigError

logger = logging.getLogger(__name__)

PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")

# Accepted key spellings per field, canonical name first.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "tenant_id": ("tenantId", "tenant_id", "clienteId"),
    "namespace": ("namespace", "r2Prefix"),
    "bucket": ("bucket", "r2Bucket"),
    "tax_id": ("taxId", "tax_id", "cuit"),
}

_versions = itertools.count(1)


@dataclass(frozen=True)
class TenantDescriptor:
    tenant_id: str
    namespace: str
    bucket: str
    tax_id: Optional[str] = None


@dataclass(frozen=True)
class TenantPrefixMap:
    """Immutable snapshot. Exactly one tenant per prefix."""

    entries: Mapping[str, TenantDescriptor] = field(
        default_factory=lambda: MappingProxyType({}))
    version: int = 0
    source: str = ""

    def lookup(self, prefix: str) -> Optional[TenantDescriptor]:
        return self.entries.get(prefix)

    def tenants(self) -> list[TenantDescriptor]:
        return list(self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, prefix: object) -> bool:
        return prefix in self.entries


def _pick(raw: Mapping[str, Any], field_name: str) -> Optional[str]:
    for key in _FIELD_ALIASES[field_name]:
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def build_prefix_map(
    payload: Mapping[str, Any],
    *,
    source: str = "",
    version: Optional[int] = None,
) -> TenantPrefixMap:
    """
    Build a snapshot from a decoded JSON object.

    Malformed entries (bad prefix, non-object value, missing tenant id or
    bucket) are skipped with a warning.
    """
    if not isinstance(payload, Mapping):
        raise ConfigError("Prefix map must be a JSON object")

    entries: dict[str, TenantDescriptor] = {}
    for prefix, raw in payload.items():
        if not isinstance(prefix, str) or not PREFIX_PATTERN.match(prefix):
            logger.warning("Skipping prefix map entry with invalid prefix: %r", prefix)
            continue
        if not isinstance(raw, Mapping):
            logger.warning("Skipping prefix map entry '%s': value is not an object", prefix)
            continue
        tenant_id = _pick(raw, "tenant_id")
        bucket = _pick(raw, "bucket")
        if not tenant_id or not bucket:
            logger.warning(
                "Skipping prefix map entry '%s': tenant id and bucket are required", prefix)
            continue
        entries[prefix] = TenantDescriptor(
            tenant_id=tenant_id,
            namespace=_pick(raw, "namespace") or "",
            bucket=bucket,
            tax_id=_pick(raw, "tax_id"),
        )

    return TenantPrefixMap(
        entries=MappingProxyType(entries),
        version=version if version is not None else next(_versions),
        source=source,
    )


def load_prefix_map(path: str | Path) -> TenantPrefixMap:
    """Load a snapshot from a JSON file. Raises ConfigError when unreadable."""
    p = Path(path)
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Prefix map not found: {p}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Prefix map unreadable: {p}: {exc}") from exc
    snapshot = build_prefix_map(payload, source=str(p))
    logger.info(
        "Loaded prefix map %s (version=%d, %d prefixes)", p, snapshot.version, len(snapshot))
    return snapshot


class PrefixMapHolder:
    """
    Owns the current snapshot. Reads are a single attribute load; writers
    serialise on a lock and replace the reference in one assignment.
    """

    def __init__(self, initial: Optional[TenantPrefixMap] = None,
                 *, path: Optional[str] = None):
        self._current = initial or TenantPrefixMap()
        self._path = path
        self._write_lock = Lock()

    @classmethod
    def from_file(cls, path: str) -> "PrefixMapHolder":
        return cls(load_prefix_map(path), path=path)

    def current(self) -> TenantPrefixMap:
        return self._current

    @property
    def version(self) -> int:
        return self._current.version

    def swap(self, snapshot: TenantPrefixMap) -> TenantPrefixMap:
        with self._write_lock:
            previous = self._current
            self._current = snapshot
        logger.info(
            "Prefix map swapped: version %d -> %d", previous.version, snapshot.version)
        return previous

    def reload(self, path: Optional[str] = None) -> bool:
        """
        Re-read the prefix map file. On failure the previous snapshot stays
        in place and False is returned.
        """
        target = path or self._path
        if not target:
            raise ConfigError("No prefix map path configured for reload")
        try:
            snapshot = load_prefix_map(target)
        except ConfigError as exc:
            logger.warning("Prefix map reload failed, keeping version %d: %s",
                           self.version, exc)
            return False
        self.swap(snapshot)
        self._path = target
        return True


__all__ = [
    "TenantDescriptor",
    "TenantPrefixMap",
    "PrefixMapHolder",
    "build_prefix_map",
    "load_prefix_map",
    "PREFIX_PATTERN",
]

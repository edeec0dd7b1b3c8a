"""Filename prefix routing."""
from __future__ import annotations

import re
from typing import Optional

from axp_exceptions import UnroutableFileError
from .prefix_map import TenantDescriptor, TenantPrefixMap

_PREFIX_RE = re.compile(r"^([A-Za-z0-9-]+)_")


def extract_prefix(filename: str) -> Optional[str]:
    """
    Return the substring before the first underscore, or None when there is
    no underscore or the prefix contains characters outside [A-Za-z0-9-].

    >>> extract_prefix("weiss_20251226.pdf")
    'weiss'
    """
    if not filename:
        return None
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    match = _PREFIX_RE.match(name)
    if not match:
        return None
    return match.group(1)


def route(filename: str, prefix_map: TenantPrefixMap) -> TenantDescriptor:
    prefix = extract_prefix(filename)
    if prefix is None:
        raise UnroutableFileError(filename)
    tenant = prefix_map.lookup(prefix)
    if tenant is None:
        raise UnroutableFileError(filename, prefix)
    return tenant


__all__ = ["extract_prefix", "route"]

"""
Routing package exports.
"""

from .prefix_map import (
    TenantDescriptor,
    TenantPrefixMap,
    PrefixMapHolder,
    build_prefix_map,
    load_prefix_map,
)
from .router import extract_prefix, route
from .storage_key import (
    sanitise_filename,
    build_storage_key,
    add_fingerprint_suffix,
    timestamp_from_filename,
)

__all__ = [
    "TenantDescriptor",
    "TenantPrefixMap",
    "PrefixMapHolder",
    "build_prefix_map",
    "load_prefix_map",
    "extract_prefix",
    "route",
    "sanitise_filename",
    "build_storage_key",
    "add_fingerprint_suffix",
    "timestamp_from_filename",
]

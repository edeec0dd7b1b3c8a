"""Content fingerprinting and tenant-scoped deduplication claims."""
from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Protocol

from store.repository import ClaimResult

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def compute_fingerprint(path: str | Path) -> str:
    """Streaming SHA-256 hex digest of the file contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ClaimStore(Protocol):
    def claim_fingerprint(self, tenant_id: str, fingerprint: str,
                          task_id: str) -> ClaimResult: ...

    def release_claim(self, tenant_id: str, fingerprint: str,
                      task_id: str) -> bool: ...


class ContentDedup:
    """
    First task to claim (tenant, fingerprint) owns the content. A later task
    with the same bytes for the same tenant is a duplicate.
    """

    def __init__(self, store: ClaimStore):
        self._store = store

    def claim(self, tenant_id: str, fingerprint: str, task_id: str) -> ClaimResult:
        result = self._store.claim_fingerprint(tenant_id, fingerprint, task_id)
        if not result.claimed and not result.resumed:
            logger.info("Duplicate content for tenant %s: %s already held (document=%s)",
                        tenant_id, fingerprint[:12], result.existing_document_id)
        return result

    def release(self, tenant_id: str, fingerprint: str, task_id: str) -> bool:
        released = self._store.release_claim(tenant_id, fingerprint, task_id)
        if released:
            logger.info("Released claim %s/%s held by task %s",
                        tenant_id, fingerprint[:12], task_id)
        return released


__all__ = [
    "compute_fingerprint",
    "fingerprint_bytes",
    "ClaimStore",
    "ContentDedup",
]

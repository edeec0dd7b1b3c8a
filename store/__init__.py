"""
Store package exports.
"""

from .models import Base, ClaimStatus, Document, FingerprintClaim, Provider
from .repository import ClaimResult, RecordStore, create_db_engine

__all__ = [
    "Base",
    "ClaimStatus",
    "Document",
    "FingerprintClaim",
    "Provider",
    "ClaimResult",
    "RecordStore",
    "create_db_engine",
]

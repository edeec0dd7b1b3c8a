"""Relational models for providers, documents and fingerprint claims."""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ClaimStatus:
    CLAIMED = "claimed"
    STORED = "stored"
    RELEASED = "released"


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    legal_name: Mapped[str] = mapped_column(String(255))
    tax_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    aliases: Mapped[list[str]] = mapped_column(JSON, default=list)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    default_letter: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    def __repr__(self) -> str:
        return f"<Provider {self.id} {self.legal_name!r} tenant={self.tenant_id}>"


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_business_key",
              "tenant_id", "provider_id", "issue_date", "full_number"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)

    # Critical
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    provider_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("providers.id"), nullable=True, index=True)
    issue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    # Secondary
    letter: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    full_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    tax: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    review_state: Mapped[str] = mapped_column(String(16), index=True)
    missing_fields: Mapped[list[str]] = mapped_column(JSON, default=list)
    hold: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    duplicate_of: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    bucket: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    storage_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    source_filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    doc_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    extracted_provider_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    extracted_tax_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, default=dict, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.review_state} tenant={self.tenant_id}>"


class FingerprintClaim(Base):
    __tablename__ = "fingerprint_claims"
    __table_args__ = (
        UniqueConstraint("tenant_id", "fingerprint", name="uq_claim_tenant_fingerprint"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64))
    fingerprint: Mapped[str] = mapped_column(String(64))
    task_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default=ClaimStatus.CLAIMED)
    document_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


__all__ = [
    "Base",
    "ClaimStatus",
    "Provider",
    "Document",
    "FingerprintClaim",
]

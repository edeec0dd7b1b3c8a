"""
RecordStore: SQLAlchemy-backed persistence for the ingest pipeline.

Query helpers take an explicit session so callers can group several of them
into one transaction via `session_scope()`.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional, Sequence

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from axp_exceptions import StoreError, wrap_exception
from .models import Base, ClaimStatus, Document, FingerprintClaim, Provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    existing_document_id: Optional[str] = None
    # The same task already stored a document for this fingerprint.
    resumed: bool = False


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite") and (
        database_url in ("sqlite://", "sqlite:///:memory:")
    ):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


class RecordStore:
    def __init__(self, engine: Engine):
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str) -> "RecordStore":
        return cls(create_db_engine(database_url))

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """One transaction: commit on success, rollback and re-raise on error."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise wrap_exception(exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -----------------------------------------------------------------------
    # FINGERPRINT CLAIMS
    # -----------------------------------------------------------------------

    def claim_fingerprint(self, tenant_id: str, fingerprint: str, task_id: str) -> ClaimResult:
        """
        Conditional insert keyed by (tenant_id, fingerprint). The unique
        constraint decides the winner when two workers race.
        """
        try:
            with self.session_scope() as session:
                session.add(FingerprintClaim(
                    tenant_id=tenant_id,
                    fingerprint=fingerprint,
                    task_id=task_id,
                    status=ClaimStatus.CLAIMED,
                ))
            return ClaimResult(claimed=True)
        except StoreError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise

        with self.session_scope() as session:
            # Take over a claim whose task was dead-lettered.
            result = session.execute(
                update(FingerprintClaim)
                .where(
                    FingerprintClaim.tenant_id == tenant_id,
                    FingerprintClaim.fingerprint == fingerprint,
                    FingerprintClaim.status == ClaimStatus.RELEASED,
                )
                .values(task_id=task_id, status=ClaimStatus.CLAIMED, document_id=None)
            )
            if result.rowcount == 1:
                logger.info("Took over released claim %s/%s for task %s",
                            tenant_id, fingerprint[:12], task_id)
                return ClaimResult(claimed=True)

            existing = session.scalars(
                select(FingerprintClaim).where(
                    FingerprintClaim.tenant_id == tenant_id,
                    FingerprintClaim.fingerprint == fingerprint,
                )
            ).one()
            if existing.task_id == task_id:
                if existing.status == ClaimStatus.STORED:
                    return ClaimResult(
                        claimed=False,
                        existing_document_id=existing.document_id,
                        resumed=True,
                    )
                return ClaimResult(claimed=True)
            return ClaimResult(claimed=False, existing_document_id=existing.document_id)

    def release_claim(self, tenant_id: str, fingerprint: str, task_id: str) -> bool:
        with self.session_scope() as session:
            result = session.execute(
                update(FingerprintClaim)
                .where(
                    FingerprintClaim.tenant_id == tenant_id,
                    FingerprintClaim.fingerprint == fingerprint,
                    FingerprintClaim.task_id == task_id,
                    FingerprintClaim.status == ClaimStatus.CLAIMED,
                )
                .values(status=ClaimStatus.RELEASED)
            )
            return result.rowcount == 1

    @staticmethod
    def mark_claim_stored(
        session: Session,
        *,
        tenant_id: str,
        fingerprint: str,
        task_id: str,
        document_id: str,
    ) -> None:
        result = session.execute(
            update(FingerprintClaim)
            .where(
                FingerprintClaim.tenant_id == tenant_id,
                FingerprintClaim.fingerprint == fingerprint,
                FingerprintClaim.task_id == task_id,
                FingerprintClaim.status == ClaimStatus.CLAIMED,
            )
            .values(status=ClaimStatus.STORED, document_id=document_id)
        )
        if result.rowcount != 1:
            raise StoreError(
                f"Claim {tenant_id}/{fingerprint[:12]} is no longer held by task {task_id}")

    # -----------------------------------------------------------------------
    # PROVIDERS
    # -----------------------------------------------------------------------

    @staticmethod
    def list_providers(
        session: Session, tenant_id: str, *, active_only: bool = True
    ) -> Sequence[Provider]:
        stmt = select(Provider).where(Provider.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(Provider.active.is_(True))
        return session.scalars(stmt.order_by(Provider.id)).all()

    @staticmethod
    def get_provider(session: Session, provider_id: str) -> Optional[Provider]:
        return session.get(Provider, provider_id)

    @staticmethod
    def document_counts(session: Session, tenant_id: str) -> dict[str, int]:
        rows = session.execute(
            select(Document.provider_id, func.count(Document.id))
            .where(Document.tenant_id == tenant_id, Document.provider_id.is_not(None))
            .group_by(Document.provider_id)
        ).all()
        return {provider_id: int(count) for provider_id, count in rows}

    def add_provider(self, provider: Provider) -> Provider:
        with self.session_scope() as session:
            session.add(provider)
        return provider

    # -----------------------------------------------------------------------
    # DOCUMENTS
    # -----------------------------------------------------------------------

    @staticmethod
    def get_document(session: Session, document_id: str) -> Optional[Document]:
        return session.get(Document, document_id)

    @staticmethod
    def documents_by_ids(
        session: Session, tenant_id: str, document_ids: Sequence[str]
    ) -> Sequence[Document]:
        if not document_ids:
            return []
        return session.scalars(
            select(Document).where(
                Document.tenant_id == tenant_id,
                Document.id.in_(list(document_ids)),
            ).order_by(Document.id)
        ).all()

    @staticmethod
    def find_business_duplicate(
        session: Session,
        *,
        tenant_id: str,
        provider_id: Optional[str],
        issue_date: Optional[date],
        full_number: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> Optional[str]:
        """Id of an earlier document with the same provider, issue date and number."""
        if not provider_id or issue_date is None or not full_number:
            return None
        stmt = select(Document.id).where(
            Document.tenant_id == tenant_id,
            Document.provider_id == provider_id,
            Document.issue_date == issue_date,
            Document.full_number == full_number,
        )
        if exclude_id:
            stmt = stmt.where(Document.id != exclude_id)
        return session.scalars(stmt.order_by(Document.created_at, Document.id)).first()

    @staticmethod
    def add_document(session: Session, document: Document) -> Document:
        session.add(document)
        session.flush()
        return document

    @staticmethod
    def delete_document(session: Session, document: Document) -> None:
        session.delete(document)


__all__ = [
    "ClaimResult",
    "RecordStore",
    "create_db_engine",
]

"""
Document lifecycle: creation from extraction output, provider reassignment
(single and bulk), manual field edits and presigned download links.

Every operation that changes a review field re-runs the evaluator in the same
transaction that writes the change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from axp_exceptions import ValidationError
from config.constant import (
    DEFAULT_CURRENCY,
    DEFAULT_DOC_TYPE,
    EXTRACTED_CODE_MAX_CHARS,
    EXTRACTED_CURRENCY_MAX_CHARS,
    S3_PRESIGNED_URL_EXPIRY,
    ReviewStates,
)
from interfaces.object_store import ObjectStore
from routing.prefix_map import TenantDescriptor
from store.models import Document, Provider
from store.repository import RecordStore
from .estado import DocumentFields, HOLD_STATES, apply_hold, evaluate
from .extraction import ExtractedInvoice, parse_amount, parse_date
from .provider_resolver import ProviderCandidate, ProviderResolver, digits_only

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "issue_date", "total", "letter", "full_number", "subtotal", "tax",
    "due_date", "currency", "doc_type",
})
_AMOUNT_FIELDS = frozenset({"total", "subtotal", "tax"})
_DATE_FIELDS = frozenset({"issue_date", "due_date"})
_MAX_CHARS = {
    "full_number": EXTRACTED_CODE_MAX_CHARS,
    "letter": 2,
    "currency": EXTRACTED_CURRENCY_MAX_CHARS,
    "doc_type": EXTRACTED_CODE_MAX_CHARS,
}


@dataclass(frozen=True)
class SourceRef:
    """Where a document's file came from and where it is stored."""
    task_id: str
    fingerprint: str
    bucket: str
    storage_key: str
    filename: str


@dataclass
class BulkAssignResult:
    updated: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


def refresh_review_state(document: Document) -> None:
    evaluation = apply_hold(evaluate(DocumentFields.from_object(document)), document.hold)
    document.review_state = evaluation.review_state
    document.missing_fields = list(evaluation.missing_fields)


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _AMOUNT_FIELDS:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        parsed = parse_amount(str(value))
        if parsed is None and str(value).strip():
            raise ValidationError(f"Invalid amount for {name}: {value!r}")
        return parsed
    if name in _DATE_FIELDS:
        if isinstance(value, date):
            return value
        parsed = parse_date(str(value))
        if parsed is None and str(value).strip():
            raise ValidationError(f"Invalid date for {name}: {value!r}")
        return parsed
    if name == "full_number":
        text = digits_only(str(value))
    elif name == "letter":
        text = str(value).strip().upper()
    else:
        text = str(value).strip()
    if len(text) > _MAX_CHARS.get(name, len(text)):
        raise ValidationError(f"Value too long for {name}: {value!r}")
    return text or None


class DocumentService:
    def __init__(
        self,
        store: RecordStore,
        resolver: Optional[ProviderResolver] = None,
        *,
        object_store: Optional[ObjectStore] = None,
        presign_ttl_seconds: int = S3_PRESIGNED_URL_EXPIRY,
    ) -> None:
        self.store = store
        self.resolver = resolver or ProviderResolver()
        self.object_store = object_store
        self.presign_ttl_seconds = int(presign_ttl_seconds)

    # -----------------------------------------------------------------------
    # CREATION
    # -----------------------------------------------------------------------

    def create_from_extraction(
        self,
        tenant: TenantDescriptor,
        invoice: ExtractedInvoice,
        source: SourceRef,
    ) -> Document:
        tenant_tax_id = digits_only(tenant.tax_id)
        with self.store.session_scope() as session:
            providers = [ProviderCandidate.from_model(p)
                         for p in self.store.list_providers(session, tenant.tenant_id)]
            counts = self.store.document_counts(session, tenant.tenant_id)
            match = self.resolver.resolve(
                invoice.provider_name,
                invoice.provider_tax_id,
                providers,
                document_counts=counts,
                tenant_tax_id=tenant.tax_id,
            )
            if match is not None and match.backfill_tax_id:
                row = self.store.get_provider(session, match.provider_id)
                if row is not None and not row.tax_id:
                    row.tax_id = match.backfill_tax_id
                    logger.info("Back-filled tax id %s on provider %s",
                                match.backfill_tax_id, row.id)

            full_number = invoice.full_number
            if full_number and tenant_tax_id and full_number == tenant_tax_id:
                logger.warning("Full number %s equals the tenant tax id; clearing it", full_number)
                full_number = None
            extracted_tax_id = invoice.provider_tax_id
            if extracted_tax_id and digits_only(extracted_tax_id) == tenant_tax_id:
                extracted_tax_id = None

            letter = invoice.letter
            if not letter and match is not None and match.provider.default_letter:
                letter = match.provider.default_letter

            provider_id = match.provider_id if match is not None else None
            duplicate_of = self.store.find_business_duplicate(
                session,
                tenant_id=tenant.tenant_id,
                provider_id=provider_id,
                issue_date=invoice.issue_date,
                full_number=full_number,
            )

            document = Document(
                tenant_id=tenant.tenant_id,
                provider_id=provider_id,
                issue_date=invoice.issue_date,
                total=invoice.total,
                letter=letter,
                full_number=full_number,
                subtotal=invoice.subtotal,
                tax=invoice.tax,
                hold=ReviewStates.DUPLICADO if duplicate_of else None,
                duplicate_of=duplicate_of,
                due_date=invoice.due_date,
                currency=invoice.currency or DEFAULT_CURRENCY,
                doc_type=invoice.doc_type or DEFAULT_DOC_TYPE,
                confidence=invoice.confidence,
                extracted_provider_name=invoice.provider_name,
                extracted_tax_id=extracted_tax_id,
                **self._source_columns(source),
            )
            refresh_review_state(document)
            self.store.add_document(session, document)
            self.store.mark_claim_stored(
                session,
                tenant_id=tenant.tenant_id,
                fingerprint=source.fingerprint,
                task_id=source.task_id,
                document_id=document.id,
            )

        logger.info(
            "Created document %s for %s: state=%s provider=%s (%s) missing=%s",
            document.id, source.filename, document.review_state, provider_id,
            match.method if match else "unmatched", document.missing_fields,
        )
        return document

    def create_failed(
        self,
        tenant: TenantDescriptor,
        source: SourceRef,
        error: str,
    ) -> Document:
        """Persist a document held in ERROR so it stays discoverable."""
        with self.store.session_scope() as session:
            document = Document(
                tenant_id=tenant.tenant_id,
                hold=ReviewStates.ERROR,
                error_detail=error,
                currency=DEFAULT_CURRENCY,
                doc_type=DEFAULT_DOC_TYPE,
                **self._source_columns(source),
            )
            refresh_review_state(document)
            self.store.add_document(session, document)
            self.store.mark_claim_stored(
                session,
                tenant_id=tenant.tenant_id,
                fingerprint=source.fingerprint,
                task_id=source.task_id,
                document_id=document.id,
            )
        logger.warning("Created ERROR document %s for %s: %s",
                       document.id, source.filename, error)
        return document

    @staticmethod
    def _source_columns(source: SourceRef) -> dict[str, Any]:
        return {
            "fingerprint": source.fingerprint,
            "bucket": source.bucket,
            "storage_key": source.storage_key,
            "source_filename": source.filename,
        }

    # -----------------------------------------------------------------------
    # EDITS
    # -----------------------------------------------------------------------

    def _load(self, session, tenant_id: str, document_id: str) -> Document:
        document = self.store.get_document(session, document_id)
        if document is None or document.tenant_id != tenant_id:
            raise ValidationError(f"Document {document_id} not found for tenant {tenant_id}")
        return document

    def _assignable_provider(self, session, tenant_id: str,
                             provider_id: Optional[str]) -> Optional[Provider]:
        if provider_id is None:
            return None
        provider = self.store.get_provider(session, provider_id)
        if provider is None or provider.tenant_id != tenant_id:
            raise ValidationError(f"Provider {provider_id} not found for tenant {tenant_id}")
        if not provider.active:
            raise ValidationError(f"Provider {provider_id} is inactive")
        return provider

    def _sync_duplicate(self, session, document: Document) -> None:
        """Set or clear the DUPLICADO hold from the current business key."""
        if document.hold not in (None, ReviewStates.DUPLICADO):
            return
        duplicate_of = self.store.find_business_duplicate(
            session,
            tenant_id=document.tenant_id,
            provider_id=document.provider_id,
            issue_date=document.issue_date,
            full_number=document.full_number,
            exclude_id=document.id,
        )
        document.duplicate_of = duplicate_of
        document.hold = ReviewStates.DUPLICADO if duplicate_of else None

    def _assign(self, session, document: Document, provider: Optional[Provider]) -> None:
        document.provider_id = provider.id if provider is not None else None
        if provider is not None and not document.letter and provider.default_letter:
            document.letter = provider.default_letter
        self._sync_duplicate(session, document)
        refresh_review_state(document)

    def reassign_provider(self, tenant_id: str, document_id: str,
                          provider_id: Optional[str]) -> Document:
        with self.store.session_scope() as session:
            provider = self._assignable_provider(session, tenant_id, provider_id)
            document = self._load(session, tenant_id, document_id)
            self._assign(session, document, provider)
        logger.info("Document %s assigned to provider %s: state=%s",
                    document_id, provider_id, document.review_state)
        return document

    def bulk_reassign(self, tenant_id: str, document_ids: Sequence[str],
                      provider_id: Optional[str]) -> BulkAssignResult:
        """
        Set the provider directly (no resolution) on each document, one
        transaction per document. `provider_id=None` unassigns.
        """
        with self.store.session_scope() as session:
            self._assignable_provider(session, tenant_id, provider_id)

        result = BulkAssignResult()
        for document_id in dict.fromkeys(document_ids):
            with self.store.session_scope() as session:
                provider = self._assignable_provider(session, tenant_id, provider_id)
                document = self.store.get_document(session, document_id)
                if document is None or document.tenant_id != tenant_id:
                    result.not_found.append(document_id)
                    continue
                self._assign(session, document, provider)
            result.updated.append(document_id)
        logger.info("Bulk assignment to provider %s: %d updated, %d not found",
                    provider_id, len(result.updated), len(result.not_found))
        return result

    def update_fields(self, tenant_id: str, document_id: str,
                      changes: Mapping[str, Any]) -> Document:
        unknown = set(changes) - EDITABLE_FIELDS - {"provider_id"}
        if unknown:
            raise ValidationError(f"Fields not editable: {sorted(unknown)}")
        with self.store.session_scope() as session:
            document = self._load(session, tenant_id, document_id)
            if "provider_id" in changes:
                provider = self._assignable_provider(session, tenant_id, changes["provider_id"])
                document.provider_id = provider.id if provider is not None else None
            for name, value in changes.items():
                if name == "provider_id":
                    continue
                setattr(document, name, _coerce(name, value))
            self._sync_duplicate(session, document)
            refresh_review_state(document)
        return document

    def set_hold(self, tenant_id: str, document_id: str, hold: Optional[str]) -> Document:
        if hold is not None and hold not in HOLD_STATES:
            raise ValidationError(f"Unknown hold state: {hold}")
        with self.store.session_scope() as session:
            document = self._load(session, tenant_id, document_id)
            document.hold = hold
            if hold != ReviewStates.DUPLICADO:
                document.duplicate_of = None
            refresh_review_state(document)
        return document

    # -----------------------------------------------------------------------
    # DOWNLOADS
    # -----------------------------------------------------------------------

    def presigned_url(self, tenant_id: str, document_id: str,
                      ttl_seconds: Optional[int] = None) -> str:
        if self.object_store is None:
            raise ValidationError("No object store configured")
        with self.store.session_scope() as session:
            document = self._load(session, tenant_id, document_id)
            bucket, key = document.bucket, document.storage_key
        if not bucket or not key:
            raise ValidationError(f"Document {document_id} has no stored object")
        return self.object_store.presign(bucket, key, ttl_seconds or self.presign_ttl_seconds)


__all__ = [
    "SourceRef",
    "BulkAssignResult",
    "DocumentService",
    "refresh_review_state",
    "EDITABLE_FIELDS",
]

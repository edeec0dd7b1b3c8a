# ExtractionService port
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from axp_exceptions import ExternalServiceError, ExtractionError, wrap_exception
from .object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldCandidate:
    name: str
    value: str
    confidence: float = 100.0


@dataclass(frozen=True)
class ExtractionResult:
    fields: tuple[FieldCandidate, ...] = ()
    lines: tuple[str, ...] = ()
    confidence: Optional[float] = None

    def candidates(self, name: str) -> list[FieldCandidate]:
        return [c for c in self.fields if c.name == name]


class ExtractionService(Protocol):
    def analyse(self, bucket: str, key: str) -> ExtractionResult: ...


# AnalyzeExpense summary field types -> canonical field names
TEXTRACT_FIELD_MAP: dict[str, str] = {
    "VENDOR_NAME": "provider_name",
    "NAME": "provider_name",
    "TAX_PAYER_ID": "provider_tax_id",
    "VENDOR_VAT_NUMBER": "provider_tax_id",
    "INVOICE_RECEIPT_DATE": "issue_date",
    "DUE_DATE": "due_date",
    "TOTAL": "total",
    "AMOUNT_DUE": "total",
    "SUBTOTAL": "subtotal",
    "TAX": "tax",
    "INVOICE_RECEIPT_ID": "full_number",
}

# Textract rejects these inputs for good; retrying cannot help.
_PERMANENT_CODES = frozenset({
    "UnsupportedDocumentException",
    "BadDocumentException",
    "DocumentTooLargeException",
    "InvalidParameterException",
})


def parse_expense_response(response: Mapping[str, Any]) -> ExtractionResult:
    candidates: list[FieldCandidate] = []
    lines: list[str] = []
    confidences: list[float] = []
    for doc in response.get("ExpenseDocuments") or []:
        for summary in doc.get("SummaryFields") or []:
            field_type = ((summary.get("Type") or {}).get("Text") or "").upper()
            name = TEXTRACT_FIELD_MAP.get(field_type)
            value = (summary.get("ValueDetection") or {})
            text = (value.get("Text") or "").strip()
            if not name or not text:
                continue
            confidence = float(value.get("Confidence") or 0.0)
            candidates.append(FieldCandidate(name=name, value=text, confidence=confidence))
        for block in doc.get("Blocks") or []:
            if block.get("BlockType") != "LINE":
                continue
            text = (block.get("Text") or "").strip()
            if text:
                lines.append(text)
            if block.get("Confidence") is not None:
                confidences.append(float(block["Confidence"]))
    overall = sum(confidences) / len(confidences) if confidences else None
    return ExtractionResult(fields=tuple(candidates), lines=tuple(lines), confidence=overall)


class TextractExtractionService:
    """
    AnalyzeExpense over the stored object bytes. The bytes are fetched from
    the object store so the bucket need not be readable by Textract.
    """

    def __init__(self, client: Any, object_store: ObjectStore):
        if client is None:
            raise RuntimeError("textract client not provided")
        self._client = client
        self._object_store = object_store

    def analyse(self, bucket: str, key: str) -> ExtractionResult:
        data = self._object_store.get(bucket, key)
        try:
            response = self._client.analyze_expense(Document={"Bytes": data})
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _PERMANENT_CODES:
                raise ExtractionError(f"Textract rejected {key}: {code}") from exc
            raise ExternalServiceError(f"Textract failed for {key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise wrap_exception(exc) from exc
        result = parse_expense_response(response)
        logger.info("Textract analysed %s: %d fields, %d lines",
                    key, len(result.fields), len(result.lines))
        return result


@dataclass
class StaticExtractionService:
    """
    Returns canned results keyed by object key (or a default). An Exception
    value is raised instead; a list of values is consumed one per call.
    """

    results: dict[str, Any] = field(default_factory=dict)
    default: Any = field(default_factory=ExtractionResult)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def analyse(self, bucket: str, key: str) -> ExtractionResult:
        with self._lock:
            self.calls.append((bucket, key))
            outcome = self._next_for(key)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _next_for(self, key: str) -> Any:
        for pattern, value in self.results.items():
            if pattern == key or key.endswith(pattern):
                if isinstance(value, list):
                    return value.pop(0) if len(value) > 1 else value[0]
                return value
        return self.default


__all__ = [
    "FieldCandidate",
    "ExtractionResult",
    "ExtractionService",
    "TextractExtractionService",
    "StaticExtractionService",
    "parse_expense_response",
    "TEXTRACT_FIELD_MAP",
]

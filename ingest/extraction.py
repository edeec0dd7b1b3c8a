#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Turn raw extraction output into typed invoice fields.

Structured candidates from the extraction service are preferred; the text
lines are scanned with pattern parsers for anything still missing. Defaults
(currency, document type, due date) are applied last.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Sequence

from config.constant import (
    DEFAULT_CURRENCY,
    DEFAULT_DOC_TYPE,
    EXTRACTED_CODE_MAX_CHARS,
    EXTRACTED_CURRENCY_MAX_CHARS,
    EXTRACTED_NAME_MAX_CHARS,
    EXTRACTION_MIN_CONFIDENCE,
)
from interfaces.extraction import ExtractionResult

logger = logging.getLogger(__name__)

_MAX_AMOUNT = Decimal("1000000000")
_HEADER_LINES = 15
_PROVIDER_IGNORE = ("ORIGINAL", "DUPLICADO", "TRIPLICADO", "FACTURA", "REMITO")


@dataclass(frozen=True)
class ExtractedInvoice:
    provider_name: Optional[str] = None
    provider_tax_id: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    total: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    letter: Optional[str] = None
    full_number: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    doc_type: str = DEFAULT_DOC_TYPE
    confidence: Optional[float] = None


# --------------------------------------------------------------------------------------
# Value parsers
# --------------------------------------------------------------------------------------


def parse_amount(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse '1.493,82', '1,493.82', '1493.82' or '$ 1.234' into a Decimal.
    The right-most separator followed by one or two digits is the decimal mark.
    """
    if not text:
        return None
    s = re.sub(r"[^\d.,-]", "", str(text))
    if not s or not re.search(r"\d", s):
        return None
    negative = s.startswith("-")
    s = s.replace("-", "")
    last_sep = max(s.rfind(","), s.rfind("."))
    if last_sep >= 0 and 1 <= len(s) - last_sep - 1 <= 2:
        integer = re.sub(r"[.,]", "", s[:last_sep])
        number = f"{integer or '0'}.{s[last_sep + 1:]}"
    else:
        number = re.sub(r"[.,]", "", s)
    try:
        value = Decimal(number).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    return -value if negative else value


_DMY = re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})")
_YMD = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")


def parse_date(text: Optional[str]) -> Optional[date]:
    """Day-first dates ('20/12/2025', '20-12-2025') and ISO dates."""
    if not text:
        return None
    s = str(text).strip()
    try:
        match = _YMD.search(s)
        if match:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        match = _DMY.search(s)
        if match:
            return date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
    except ValueError:
        return None
    return None


def _plausible(amount: Optional[Decimal]) -> Optional[Decimal]:
    if amount is None or amount <= 0 or amount >= _MAX_AMOUNT:
        return None
    return amount


# --------------------------------------------------------------------------------------
# Line parsers
# --------------------------------------------------------------------------------------


def detect_doc_type(lines: Sequence[str]) -> str:
    text = " ".join(lines).upper()
    if "NOTA DE CREDITO" in text or "NOTA DE CRÉDITO" in text or "NOTA CRÉDITO" in text:
        return "NOTA_CREDITO"
    if "REMITO" in text:
        return "REMITO"
    return DEFAULT_DOC_TYPE


def extract_letter(lines: Sequence[str]) -> Optional[str]:
    for line in lines:
        match = re.search(r"FACTURA\s+([ABC])\b", line, re.IGNORECASE)
        if match:
            return match.group(1).upper()
    return None


def extract_full_number(lines: Sequence[str]) -> Optional[str]:
    for line in lines:
        match = re.search(r"([A-Z]?\d{4,5})[-\s](\d{8,})", line)
        if match:
            return f"{match.group(1)}-{match.group(2)}"
    return None


def _labelled_date(lines: Sequence[str], label: str) -> Optional[date]:
    pattern = re.compile(label + r"[:.\s]*(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})", re.IGNORECASE)
    for line in lines:
        match = pattern.search(line)
        if match:
            parsed = parse_date(match.group(1))
            if parsed:
                return parsed
    return None


def extract_issue_date(lines: Sequence[str]) -> Optional[date]:
    return _labelled_date(lines, r"(?:Fecha(?:\s+Comprobante)?|Emisi[oó]n)")


def extract_due_date(lines: Sequence[str]) -> Optional[date]:
    return _labelled_date(lines, r"(?:Vto\.?|Vencimiento)")


def _labelled_amount(lines: Sequence[str], same_line: str, alone: str) -> Optional[Decimal]:
    # Not a rate such as "21,0%".
    inline = re.compile(same_line + r"[:.\s]*\$?\s*([\d.,]+)(?![\d.,]*\s*%)", re.IGNORECASE)
    for line in lines:
        match = inline.search(line.strip())
        if match:
            amount = _plausible(parse_amount(match.group(1)))
            if amount is not None:
                return amount
    label_only = re.compile(alone, re.IGNORECASE)
    for current, following in zip(lines, lines[1:]):
        if label_only.match(current.strip()):
            match = re.match(r"^\$?\s*([\d.,]+)$", following.strip())
            if match:
                amount = _plausible(parse_amount(match.group(1)))
                if amount is not None:
                    return amount
    return None


def extract_total(lines: Sequence[str]) -> Optional[Decimal]:
    return _labelled_amount(lines, r"^Total", r"^Total:?\s*$")


def extract_subtotal(lines: Sequence[str]) -> Optional[Decimal]:
    return _labelled_amount(lines, r"^(?:Subtotal|Sub\s*Total|Neto)", r"^(?:Subtotal|Neto):?\s*$")


def extract_tax(lines: Sequence[str]) -> Optional[Decimal]:
    return _labelled_amount(lines, r"^IVA(?:\s*\d+[.,]?\d*\s*%)?", r"^IVA.*:?\s*$")


def extract_currency(lines: Sequence[str]) -> str:
    text = " ".join(lines).upper()
    if "USD" in text or "DOLAR" in text or "DÓLAR" in text:
        return "USD"
    if "EUR" in text:
        return "EUR"
    return DEFAULT_CURRENCY


def extract_provider_name(lines: Sequence[str]) -> Optional[str]:
    """First meaningful header line; layouts vary too much for anything better."""
    for line in lines[:10]:
        clean = line.strip()
        if len(clean) > 3 and not any(w in clean.upper() for w in _PROVIDER_IGNORE):
            return clean
    return None


def extract_provider_tax_id(lines: Sequence[str]) -> Optional[str]:
    header = list(lines[:_HEADER_LINES])
    for line in header:
        if re.search(r"C\.?U\.?I\.?T\.?", line, re.IGNORECASE) and not re.search(
                r"cliente|comprador", line, re.IGNORECASE):
            match = re.search(r"\b(\d{2})[-\s]?(\d{8})[-\s]?(\d)\b", line)
            if match:
                return "".join(match.groups())
    for line in header:
        match = re.search(r"\b(\d{2})-(\d{8})-(\d)\b", line)
        if match:
            return "".join(match.groups())
    return None


# --------------------------------------------------------------------------------------
# Interpretation
# --------------------------------------------------------------------------------------


def _best_value(result: ExtractionResult, name: str, min_confidence: float,
                parse: Callable[[str], object]) -> Optional[object]:
    ranked = sorted(result.candidates(name), key=lambda c: c.confidence, reverse=True)
    for candidate in ranked:
        if candidate.confidence < min_confidence:
            break
        value = parse(candidate.value)
        if value is not None and value != "":
            return value
    return None


def _text(value: str) -> Optional[str]:
    clean = (value or "").strip()
    return clean or None


def _digits(value: str) -> Optional[str]:
    clean = re.sub(r"\D", "", value or "")
    return clean or None


def _letter(value: str) -> Optional[str]:
    clean = (value or "").strip().upper()
    return clean if clean in ("A", "B", "C", "E", "M") else None


def _fits(value: Optional[str], limit: int, name: str) -> Optional[str]:
    """Drop codes longer than their column."""
    if value and len(value) > limit:
        logger.warning("Discarding extracted %s of %d chars", name, len(value))
        return None
    return value


def interpret(
    result: ExtractionResult,
    *,
    min_confidence: float = EXTRACTION_MIN_CONFIDENCE,
    today: Optional[date] = None,
) -> ExtractedInvoice:
    lines = list(result.lines)
    today = today or datetime.now().date()

    def pick(name, parse, fallback):
        value = _best_value(result, name, min_confidence, parse)
        return value if value is not None else fallback(lines)

    provider_name = pick("provider_name", _text, extract_provider_name)
    provider_tax_id = pick("provider_tax_id", _digits, extract_provider_tax_id)
    issue_date = pick("issue_date", parse_date, extract_issue_date)
    due_date = pick("due_date", parse_date, extract_due_date)
    total = pick("total", lambda v: _plausible(parse_amount(v)), extract_total)
    subtotal = pick("subtotal", lambda v: _plausible(parse_amount(v)), extract_subtotal)
    tax = pick("tax", lambda v: _plausible(parse_amount(v)), extract_tax)
    letter = pick("letter", _letter, extract_letter)
    full_number = pick("full_number", _text, extract_full_number)
    currency = pick("currency", _text, extract_currency) or DEFAULT_CURRENCY
    doc_type = pick("doc_type", _text, detect_doc_type) or DEFAULT_DOC_TYPE

    if issue_date is not None and issue_date > today:
        logger.warning("Issue date %s is in the future, clamping to %s", issue_date, today)
        issue_date = today
    if full_number:
        full_number = _fits(_digits(full_number), EXTRACTED_CODE_MAX_CHARS, "full_number")
    if provider_name:
        provider_name = provider_name[:EXTRACTED_NAME_MAX_CHARS]
    provider_tax_id = _fits(provider_tax_id, EXTRACTED_CODE_MAX_CHARS, "provider_tax_id")
    currency = _fits(str(currency).upper(), EXTRACTED_CURRENCY_MAX_CHARS, "currency")
    doc_type = _fits(str(doc_type).upper(), EXTRACTED_CODE_MAX_CHARS, "doc_type")
    if due_date is None:
        due_date = issue_date

    return ExtractedInvoice(
        provider_name=provider_name,
        provider_tax_id=provider_tax_id,
        issue_date=issue_date,
        due_date=due_date,
        total=total,
        subtotal=subtotal,
        tax=tax,
        letter=letter,
        full_number=full_number,
        currency=currency or DEFAULT_CURRENCY,
        doc_type=doc_type or DEFAULT_DOC_TYPE,
        confidence=result.confidence,
    )


__all__ = [
    "ExtractedInvoice",
    "parse_amount",
    "parse_date",
    "detect_doc_type",
    "extract_letter",
    "extract_full_number",
    "extract_issue_date",
    "extract_due_date",
    "extract_total",
    "extract_subtotal",
    "extract_tax",
    "extract_currency",
    "extract_provider_name",
    "extract_provider_tax_id",
    "interpret",
]

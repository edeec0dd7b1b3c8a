"""
Review-state evaluation for documents.

A document is CONFIRMADO when all critical and secondary fields are present,
PENDIENTE otherwise. A hold (ERROR or DUPLICADO) overrides the computed state
but never the missing-field list.
"""
from __future__ import annotations

from dataclasses import dataclass, fields as dc_fields
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from config.constant import ReviewStates

CRITICAL_FIELDS: tuple[str, ...] = ("tenant_id", "provider_id", "issue_date", "total")
SECONDARY_FIELDS: tuple[str, ...] = ("letter", "full_number", "subtotal", "tax")
REVIEW_FIELDS: tuple[str, ...] = CRITICAL_FIELDS + SECONDARY_FIELDS

HOLD_STATES = frozenset({ReviewStates.ERROR, ReviewStates.DUPLICADO})


@dataclass(frozen=True)
class DocumentFields:
    tenant_id: Optional[str] = None
    provider_id: Optional[str] = None
    issue_date: Optional[date] = None
    total: Optional[Decimal] = None
    letter: Optional[str] = None
    full_number: Optional[str] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None

    @classmethod
    def from_object(cls, obj: Any) -> "DocumentFields":
        return cls(**{f.name: getattr(obj, f.name, None) for f in dc_fields(cls)})


@dataclass(frozen=True)
class Evaluation:
    review_state: str
    missing_fields: tuple[str, ...]

    @property
    def complete(self) -> bool:
        return not self.missing_fields


def is_empty(value: Any) -> bool:
    """None and blank strings are empty; numeric zero is a value."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def evaluate(fields: DocumentFields) -> Evaluation:
    missing = tuple(name for name in REVIEW_FIELDS if is_empty(getattr(fields, name)))
    state = ReviewStates.PENDIENTE if missing else ReviewStates.CONFIRMADO
    return Evaluation(review_state=state, missing_fields=missing)


def apply_hold(evaluation: Evaluation, hold: Optional[str]) -> Evaluation:
    if not hold:
        return evaluation
    if hold not in HOLD_STATES:
        raise ValueError(f"Unknown hold state: {hold}")
    return Evaluation(review_state=hold, missing_fields=evaluation.missing_fields)


__all__ = [
    "CRITICAL_FIELDS",
    "SECONDARY_FIELDS",
    "REVIEW_FIELDS",
    "DocumentFields",
    "Evaluation",
    "is_empty",
    "evaluate",
    "apply_hold",
]

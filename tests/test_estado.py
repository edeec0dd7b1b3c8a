#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Review-state evaluation tests
"""
from datetime import date
from decimal import Decimal

import pytest

from config.constant import ReviewStates
from ingest.estado import REVIEW_FIELDS, DocumentFields, apply_hold, evaluate, is_empty


COMPLETE = DocumentFields(
    tenant_id="t1",
    provider_id="p1",
    issue_date=date(2025, 12, 20),
    total=Decimal("1493.82"),
    letter="A",
    full_number="0000300012345",
    subtotal=Decimal("1234.56"),
    tax=Decimal("259.26"),
)


class TestEvaluate:

    def test_complete_document_is_confirmed(self):
        result = evaluate(COMPLETE)
        assert result.review_state == ReviewStates.CONFIRMADO
        assert result.missing_fields == ()
        assert result.complete

    @pytest.mark.parametrize("name", REVIEW_FIELDS)
    def test_any_single_missing_field_is_pending(self, name):
        result = evaluate(DocumentFields(**{**COMPLETE.__dict__, name: None}))
        assert result.review_state == ReviewStates.PENDIENTE
        assert result.missing_fields == (name,)

    @pytest.mark.parametrize("name", ["letter", "full_number", "tenant_id"])
    def test_blank_text_counts_as_missing(self, name):
        result = evaluate(DocumentFields(**{**COMPLETE.__dict__, name: "  "}))
        assert result.missing_fields == (name,)

    def test_missing_fields_keep_declaration_order(self):
        result = evaluate(DocumentFields(tenant_id="t1", total=Decimal("5")))
        assert result.missing_fields == (
            "provider_id", "issue_date", "letter", "full_number", "subtotal", "tax",
        )

    def test_zero_amount_counts_as_present(self):
        fields = DocumentFields(**{**COMPLETE.__dict__, "tax": Decimal("0")})
        assert evaluate(fields).review_state == ReviewStates.CONFIRMADO

    @pytest.mark.parametrize("value,expected", [
        (None, True),
        ("", True),
        ("   ", True),
        ("A", False),
        (0, False),
        (Decimal("0.00"), False),
    ])
    def test_is_empty(self, value, expected):
        assert is_empty(value) is expected


class TestApplyHold:

    def test_hold_overrides_state_but_keeps_missing_fields(self):
        base = evaluate(DocumentFields(tenant_id="t1"))
        held = apply_hold(base, ReviewStates.DUPLICADO)
        assert held.review_state == ReviewStates.DUPLICADO
        assert held.missing_fields == base.missing_fields

    def test_no_hold_is_identity(self):
        base = evaluate(COMPLETE)
        assert apply_hold(base, None) is base

    def test_unknown_hold_rejected(self):
        with pytest.raises(ValueError):
            apply_hold(evaluate(COMPLETE), "PENDIENTE")

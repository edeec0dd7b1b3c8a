#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Invoice field parsing and interpretation tests
"""
from datetime import date
from decimal import Decimal

import pytest

from interfaces import ExtractionResult, FieldCandidate
from interfaces.extraction import parse_expense_response
from ingest.extraction import (
    extract_full_number,
    extract_letter,
    extract_provider_tax_id,
    extract_tax,
    extract_total,
    interpret,
    parse_amount,
    parse_date,
)


LINES = (
    "DISTRIBUIDORA NORTE SRL",
    "CUIT: 30-65432109-8",
    "FACTURA A",
    "Nro 00003-00012345",
    "Fecha: 20/12/2025",
    "Vencimiento: 19/01/2026",
    "Cliente CUIT 30-71234567-8",
    "Subtotal: 1.234,56",
    "IVA 21,0%: 259,26",
    "Total",
    "$ 1.493,82",
)


class TestParsers:

    @pytest.mark.parametrize("raw,expected", [
        ("1.493,82", Decimal("1493.82")),
        ("1,493.82", Decimal("1493.82")),
        ("1493.82", Decimal("1493.82")),
        ("$ 1.234", Decimal("1234.00")),
        ("-12,5", Decimal("-12.50")),
        ("", None),
        ("abc", None),
        ("9" * 40, None),
        ("Total: " + "1" * 30 + ",50", None),
    ])
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("20/12/2025", date(2025, 12, 20)),
        ("20-12-2025", date(2025, 12, 20)),
        ("2025-12-20", date(2025, 12, 20)),
        ("31/02/2025", None),
        ("tomorrow", None),
    ])
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    def test_line_parsers(self):
        assert extract_letter(LINES) == "A"
        assert extract_full_number(LINES) == "00003-00012345"
        assert extract_provider_tax_id(LINES) == "30654321098"
        assert extract_total(LINES) == Decimal("1493.82")

    def test_tax_rate_is_not_an_amount(self):
        assert extract_tax(["IVA 21,0%", "Total: 100,00"]) is None


class TestInterpret:

    def test_lines_only(self):
        invoice = interpret(ExtractionResult(lines=LINES), today=date(2025, 12, 26))
        assert invoice.provider_name == "DISTRIBUIDORA NORTE SRL"
        assert invoice.provider_tax_id == "30654321098"
        assert invoice.issue_date == date(2025, 12, 20)
        assert invoice.due_date == date(2026, 1, 19)
        assert invoice.subtotal == Decimal("1234.56")
        assert invoice.total == Decimal("1493.82")
        assert invoice.letter == "A"
        assert invoice.full_number == "0000300012345"
        assert invoice.currency == "ARS"
        assert invoice.doc_type == "FACTURA"

    def test_confident_candidates_win_over_lines(self):
        result = ExtractionResult(
            fields=(
                FieldCandidate("total", "2.000,00", 99.0),
                FieldCandidate("provider_name", "Globex SRL", 95.0),
            ),
            lines=LINES,
        )
        invoice = interpret(result, today=date(2025, 12, 26))
        assert invoice.total == Decimal("2000.00")
        assert invoice.provider_name == "Globex SRL"

    def test_low_confidence_candidates_fall_back_to_lines(self):
        result = ExtractionResult(fields=(FieldCandidate("total", "9,99", 10.0),), lines=LINES)
        invoice = interpret(result, min_confidence=50.0, today=date(2025, 12, 26))
        assert invoice.total == Decimal("1493.82")

    def test_future_issue_date_is_clamped(self):
        result = ExtractionResult(fields=(FieldCandidate("issue_date", "01/03/2030"),))
        invoice = interpret(result, today=date(2025, 12, 26))
        assert invoice.issue_date == date(2025, 12, 26)
        assert invoice.due_date == date(2025, 12, 26)

    def test_empty_result(self):
        invoice = interpret(ExtractionResult(), today=date(2025, 12, 26))
        assert invoice.total is None
        assert invoice.provider_name is None
        assert invoice.currency == "ARS"

    def test_long_digit_runs_are_ignored(self):
        noisy = ("Total: " + "9" * 40,) + LINES
        invoice = interpret(ExtractionResult(lines=noisy), today=date(2025, 12, 26))
        assert invoice.total == Decimal("1493.82")

    def test_oversized_values_are_bounded(self):
        result = ExtractionResult(fields=(
            FieldCandidate("provider_name", "X" * 400),
            FieldCandidate("full_number", "1" * 60),
            FieldCandidate("provider_tax_id", "2" * 40),
            FieldCandidate("currency", "PESOS ARGENTINOS"),
        ))
        invoice = interpret(result, today=date(2025, 12, 26))
        assert len(invoice.provider_name) == 255
        assert invoice.full_number is None
        assert invoice.provider_tax_id is None
        assert invoice.currency == "ARS"


class TestExpenseResponse:

    def test_summary_fields_and_lines(self):
        response = {
            "ExpenseDocuments": [{
                "SummaryFields": [
                    {"Type": {"Text": "VENDOR_NAME"},
                     "ValueDetection": {"Text": "Globex SRL", "Confidence": 97.5}},
                    {"Type": {"Text": "TOTAL"},
                     "ValueDetection": {"Text": "$ 1.493,82", "Confidence": 88.0}},
                    {"Type": {"Text": "OTHER"}, "ValueDetection": {"Text": "x"}},
                ],
                "Blocks": [
                    {"BlockType": "LINE", "Text": "Globex SRL", "Confidence": 90.0},
                    {"BlockType": "WORD", "Text": "Globex", "Confidence": 10.0},
                    {"BlockType": "LINE", "Text": "Total 1.493,82", "Confidence": 80.0},
                ],
            }],
        }
        result = parse_expense_response(response)
        assert [c.name for c in result.fields] == ["provider_name", "total"]
        assert result.lines == ("Globex SRL", "Total 1.493,82")
        assert result.confidence == pytest.approx(85.0)

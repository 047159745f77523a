# test/test_normalizer.py
# -*- coding: utf-8 -*-
"""Unit tests for bgv_pipeline.tools.normalizer."""

from __future__ import annotations

from datetime import date

import pytest

from bgv_pipeline.tools import normalizer as norm

REF = date(2025, 1, 15)


# ------------------------------ field keys ------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("employee_name", norm.EMPLOYEE_NAME),
        ("Name", norm.EMPLOYEE_NAME),
        ("tenure_dates", norm.EMPLOYMENT_DATES),
        ("UAN", norm.UAN_NUMBER),
        ("ctc", norm.SALARY),
        ("department", "department"),
        ("Department", "department"),
        ("DEPARTMENT", "department"),
        ("reason_for_leaving", "reasonForLeaving"),
        ("Reason For Leaving", "reasonForLeaving"),
        ("reasonForLeaving", "reasonForLeaving"),
    ],
)
def test_canonical_field_resolves_aliases(raw: str, expected: str) -> None:
    assert norm.canonical_field(raw) == expected


def test_unknown_fields_are_text_with_readable_label() -> None:
    assert norm.field_kind("reasonForLeaving") == "text"
    assert norm.field_label("reasonForLeaving") == "Reason For Leaving"
    assert norm.field_label(norm.SALARY) == "Salary/CTC"


# ------------------------------ text ------------------------------------------

def test_clean_text_strips_zero_width_and_collapses_space() -> None:
    assert norm.clean_text("  Ravi\u200b   Kumar\ufeff ") == "Ravi Kumar"


def test_names_fold_case_but_keep_display() -> None:
    a = norm.normalize_value(norm.EMPLOYEE_NAME, "  RAVI   kumar. ", reference=REF)
    b = norm.normalize_value(norm.EMPLOYEE_NAME, "Ravi Kumar", reference=REF)
    assert a.value == b.value == "ravi kumar"
    assert a.display == "  RAVI   kumar. "


def test_company_legal_suffixes_are_ignored() -> None:
    a = norm.normalize_value(norm.COMPANY_NAME, "Acme Technologies Pvt. Ltd.", reference=REF)
    b = norm.normalize_value(norm.COMPANY_NAME, "ACME Technologies", reference=REF)
    assert a.value == b.value == "acme technologies"


def test_identifier_strips_separators() -> None:
    v = norm.normalize_value(norm.UAN_NUMBER, "1001 2345-6789", reference=REF)
    assert v.value == "100123456789"


# ------------------------------ dates -----------------------------------------

def test_iso_range_is_high_confidence() -> None:
    span, confidence = norm.parse_date_range("2020-01-01 to 2023-06-30", REF)
    assert span == (date(2020, 1, 1), date(2023, 6, 30))
    assert confidence == "high"


def test_open_ended_range_resolves_to_reference_date() -> None:
    span, confidence = norm.parse_date_range("2021-04-01 till present", REF)
    assert span == (date(2021, 4, 1), REF)
    assert confidence == "high"


def test_free_text_range_is_low_confidence() -> None:
    span, confidence = norm.parse_date_range("Jan 2020 - Mar 2023", REF)
    assert span == (date(2020, 1, 1), date(2023, 3, 1))
    assert confidence == "low"


@pytest.mark.parametrize("text", ["2023-06-30 to 2020-01-01", "since forever", "2020-01-01"])
def test_bad_ranges_are_rejected(text: str) -> None:
    span, _ = norm.parse_date_range(text, REF)
    assert span is None


def test_invalid_iso_date_is_not_parsed() -> None:
    assert norm.parse_date("2020-13-01") == (None, "low")


def test_unparsable_dates_are_flagged_and_passed_through() -> None:
    v = norm.normalize_value(norm.EMPLOYMENT_DATES, "sometime in 2020", reference=REF)
    assert v.unparsed is True
    assert v.display == "sometime in 2020"
    assert v.value is None


# ------------------------------ money -----------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("₹50,000", (50000.0, "INR")),
        ("Rs. 5.5 lakh", (550000.0, "INR")),
        ("12 LPA", (1200000.0, "INR")),
        ("50000/-", (50000.0, "INR")),
        ("50,000 per annum", (50000.0, "INR")),
        ("$1,200", (1200.0, "USD")),
        ("USD 85k", (85000.0, "USD")),
        (50000, (50000.0, "INR")),
    ],
)
def test_parse_money(raw, expected) -> None:
    assert norm.parse_money(raw, "INR") == expected


@pytest.mark.parametrize("raw", ["fifty thousand", "50000 widgets", True])
def test_parse_money_rejects_garbage(raw) -> None:
    assert norm.parse_money(raw, "INR") is None


# ------------------------------ durations -------------------------------------

@pytest.mark.parametrize(
    "raw, months",
    [("3 years 6 months", 42.0), ("42 months", 42.0), ("3.5 years", 42.0), ("2 yrs and 1 month", 25.0), (18, 18.0)],
)
def test_parse_duration_months(raw, months: float) -> None:
    assert norm.parse_duration_months(raw) == months


def test_parse_duration_rejects_free_text() -> None:
    assert norm.parse_duration_months("a long time") is None


# ------------------------------ maps ------------------------------------------

def test_normalize_fields_drops_blanks_and_keeps_first_alias() -> None:
    out = norm.normalize_fields(
        {"name": "Ravi Kumar", "employeeName": "Someone Else", "designation": "   ", "salary": None},
        reference=REF,
    )
    assert set(out) == {norm.EMPLOYEE_NAME}
    assert out[norm.EMPLOYEE_NAME].display == "Ravi Kumar"


def test_normalize_fields_accepts_none() -> None:
    assert norm.normalize_fields(None, reference=REF) == {}

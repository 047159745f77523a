# -*- coding: utf-8 -*-
"""
Field normalizer for claimed (candidate) and verified (HR) field maps.

Every raw value becomes a NormalizedValue:
  - kind: name | company | text | date_range | date | money | duration | identifier
  - value: comparable form (str, (start, end), date, (amount, currency), months)
  - display: the original value, untouched, for reports
  - confidence: "high" for the primary grammar, "low" for free-text fallbacks
  - unparsed: True when a typed field could not be parsed (never matched downstream)
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from bgv_pipeline.models import FieldMap, Scalar

# ------------------------------ Field catalog --------------------------------

EMPLOYEE_NAME = "employeeName"
COMPANY_NAME = "companyName"
DESIGNATION = "designation"
EMPLOYMENT_DATES = "employmentDates"
DATE_OF_JOINING = "dateOfJoining"
DATE_OF_LEAVING = "dateOfLeaving"
SALARY = "salary"
UAN_NUMBER = "uanNumber"
TENURE = "tenure"

# canonical key -> (kind, label)
FIELD_KINDS: Dict[str, Tuple[str, str]] = {
    EMPLOYEE_NAME: ("name", "Employee Name"),
    COMPANY_NAME: ("company", "Company Name"),
    DESIGNATION: ("text", "Designation"),
    EMPLOYMENT_DATES: ("date_range", "Employment Dates"),
    DATE_OF_JOINING: ("date", "Date of Joining"),
    DATE_OF_LEAVING: ("date", "Date of Leaving"),
    SALARY: ("money", "Salary/CTC"),
    UAN_NUMBER: ("identifier", "UAN Number"),
    TENURE: ("duration", "Tenure"),
}

_ALIASES: Dict[str, str] = {
    "employeename": EMPLOYEE_NAME,
    "employee_name": EMPLOYEE_NAME,
    "name": EMPLOYEE_NAME,
    "candidatename": EMPLOYEE_NAME,
    "companyname": COMPANY_NAME,
    "company_name": COMPANY_NAME,
    "company": COMPANY_NAME,
    "employer": COMPANY_NAME,
    "designation": DESIGNATION,
    "title": DESIGNATION,
    "jobtitle": DESIGNATION,
    "employmentdates": EMPLOYMENT_DATES,
    "employment_dates": EMPLOYMENT_DATES,
    "dates": EMPLOYMENT_DATES,
    "tenure_dates": EMPLOYMENT_DATES,
    "dateofjoining": DATE_OF_JOINING,
    "date_of_joining": DATE_OF_JOINING,
    "doj": DATE_OF_JOINING,
    "dateofleaving": DATE_OF_LEAVING,
    "date_of_leaving": DATE_OF_LEAVING,
    "dol": DATE_OF_LEAVING,
    "salary": SALARY,
    "ctc": SALARY,
    "uan": UAN_NUMBER,
    "uannumber": UAN_NUMBER,
    "uan_number": UAN_NUMBER,
    "tenure": TENURE,
}

_ZERO_WIDTH = ("\u200b", "\u200c", "\u200d", "\ufeff")
_COMPANY_SUFFIXES = {"pvt", "private", "ltd", "limited", "inc", "llp", "llc", "co", "corp", "corporation"}
_OPEN_ENDED = {"present", "current", "now", "till date", "to date", "ongoing", "currently working"}
_RANGE_SPLIT = re.compile(r"\s+(?:to|till|until)\s+|\s+[-–—]\s+", re.IGNORECASE)
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_KEY_SEPARATORS = re.compile(r"[\s_\-]+")

# Free-text fallbacks, tried in order; each is low-confidence.
_FALLBACK_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%d %b %Y", "%d %B %Y",
                          "%b %Y", "%B %Y", "%m/%Y", "%m-%Y", "%Y")

_CURRENCY_MARKERS = (
    (re.compile(r"₹|(?<![a-z])rs\.?(?![a-z])|(?<![a-z])inr(?![a-z])"), "INR"),
    (re.compile(r"\$|(?<![a-z])usd(?![a-z])"), "USD"),
    (re.compile(r"€|(?<![a-z])eur(?![a-z])"), "EUR"),
    (re.compile(r"£|(?<![a-z])gbp(?![a-z])"), "GBP"),
    (re.compile(r"(?<![a-z])sgd(?![a-z])"), "SGD"),
    (re.compile(r"(?<![a-z])aed(?![a-z])"), "AED"),
)
_AMOUNT_SUFFIX = {
    "k": 1_000, "thousand": 1_000,
    "l": 100_000, "lakh": 100_000, "lakhs": 100_000, "lac": 100_000, "lacs": 100_000, "lpa": 100_000,
    "cr": 10_000_000, "crore": 10_000_000, "crores": 10_000_000,
    "m": 1_000_000, "mn": 1_000_000, "million": 1_000_000,
}
_DURATION = re.compile(
    r"^(?:(?P<years>\d+(?:\.\d+)?)\s*(?:years?|yrs?|y))?\s*,?\s*(?:and\s+)?"
    r"(?:(?P<months>\d+)\s*(?:months?|mos?|m))?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class NormalizedValue:
    field: str
    kind: str
    display: Scalar
    value: Any = None
    confidence: str = "high"
    unparsed: bool = False


# ------------------------------ Helpers --------------------------------------

def _camel_key(key: str) -> str:
    words = [w for w in _KEY_SEPARATORS.split(key.strip()) if w]
    if not words:
        return key
    words = [w.lower() if w.isupper() else w for w in words]
    head, rest = words[0], words[1:]
    return head[:1].lower() + head[1:] + "".join(w[:1].upper() + w[1:] for w in rest)


def canonical_field(key: str) -> str:
    """
    Map a raw field key to its canonical name. Unknown keys are folded to
    camelCase ("Department", "reason_for_leaving" -> "department", "reasonForLeaving").
    """
    if key in FIELD_KINDS:
        return key
    alias = _ALIASES.get(key.strip().lower())
    if alias is not None:
        return alias
    return _camel_key(key)


def field_kind(field: str) -> str:
    return FIELD_KINDS.get(field, ("text", field))[0]


def field_label(field: str) -> str:
    if field in FIELD_KINDS:
        return FIELD_KINDS[field][1]
    spaced = re.sub(r"(?<=[a-z])(?=[A-Z])|_", " ", field)
    return spaced[:1].upper() + spaced[1:]


def is_blank(value: Scalar) -> bool:
    return value is None or (isinstance(value, str) and not clean_text(value))


def clean_text(s: str) -> str:
    """NFKC + strip zero-width chars + collapse whitespace."""
    s = unicodedata.normalize("NFKC", s)
    for zw in _ZERO_WIDTH:
        s = s.replace(zw, "")
    return re.sub(r"\s+", " ", s).strip()


def fold_text(s: str) -> str:
    """Case-folded, punctuation-trimmed comparison key."""
    folded = clean_text(s).casefold()
    folded = re.sub(r"[.,;:]+(?=\s|$)", "", folded)
    return re.sub(r"\s+", " ", folded).strip()


def _fold_company(s: str) -> str:
    words = [w for w in re.split(r"[\s.,()]+", fold_text(s)) if w]
    while len(words) > 1 and words[-1] in _COMPANY_SUFFIXES:
        words.pop()
    return " ".join(words)


def parse_date(text: str) -> Tuple[Optional[date], str]:
    """Parse one date; returns (date, confidence) or (None, 'low')."""
    text = clean_text(text)
    if _ISO_DATE.match(text):
        try:
            return datetime.strptime(text, "%Y-%m-%d").date(), "high"
        except ValueError:
            return None, "low"
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date(), "low"
        except ValueError:
            continue
    return None, "low"


def _parse_range_end(text: str, reference: date) -> Tuple[Optional[date], str]:
    if clean_text(text).casefold() in _OPEN_ENDED:
        return reference, "high"
    return parse_date(text)


def parse_date_range(text: str, reference: date) -> Tuple[Optional[Tuple[date, date]], str]:
    parts = _RANGE_SPLIT.split(clean_text(text), maxsplit=1)
    if len(parts) != 2:
        return None, "low"
    start, c1 = parse_date(parts[0])
    end, c2 = _parse_range_end(parts[1], reference)
    if start is None or end is None or end < start:
        return None, "low"
    confidence = "high" if c1 == c2 == "high" else "low"
    return (start, end), confidence


def parse_money(raw: Scalar, default_currency: str) -> Optional[Tuple[float, str]]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw), default_currency
    text = clean_text(str(raw)).casefold()
    currency = default_currency
    for marker, code in _CURRENCY_MARKERS:
        if marker.search(text):
            currency = code
            text = marker.sub(" ", text)
            break
    text = re.sub(r"(?<=\d),(?=\d)", "", text).replace("/-", " ")
    text = re.sub(r"\b(?:per annum|p\.a\.|pa|annually)(?=\s|$)", " ", text)
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([a-z]+)?\s*", text)
    if not match:
        return None
    amount = float(match.group(1))
    suffix = match.group(2)
    if suffix:
        if suffix not in _AMOUNT_SUFFIX:
            return None
        amount *= _AMOUNT_SUFFIX[suffix]
    return amount, currency


def parse_duration_months(raw: Scalar) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _DURATION.match(clean_text(str(raw)))
    if not match or not (match.group("years") or match.group("months")):
        return None
    years = float(match.group("years") or 0)
    months = float(match.group("months") or 0)
    return years * 12 + months


# ------------------------------ Public API -----------------------------------

def normalize_value(field: str, raw: Scalar, *, reference: date, default_currency: str = "INR") -> NormalizedValue:
    kind = field_kind(field)

    if kind in ("name", "company", "text"):
        text = clean_text(str(raw))
        key = _fold_company(text) if kind == "company" else fold_text(text)
        return NormalizedValue(field, kind, raw, key)

    if kind == "identifier":
        ident = re.sub(r"[\s\-]", "", clean_text(str(raw))).upper()
        return NormalizedValue(field, kind, raw, ident)

    if kind == "date_range":
        span, confidence = parse_date_range(str(raw), reference)
        if span is None:
            return NormalizedValue(field, kind, raw, unparsed=True, confidence="low")
        return NormalizedValue(field, kind, raw, span, confidence)

    if kind == "date":
        day, confidence = parse_date(str(raw))
        if day is None:
            return NormalizedValue(field, kind, raw, unparsed=True, confidence="low")
        return NormalizedValue(field, kind, raw, day, confidence)

    if kind == "money":
        money = parse_money(raw, default_currency)
        if money is None:
            return NormalizedValue(field, kind, raw, unparsed=True, confidence="low")
        return NormalizedValue(field, kind, raw, money)

    if kind == "duration":
        months = parse_duration_months(raw)
        if months is None:
            return NormalizedValue(field, kind, raw, unparsed=True, confidence="low")
        return NormalizedValue(field, kind, raw, months)

    raise ValueError(f"Unhandled field kind: {kind}")


def normalize_fields(data: Optional[FieldMap], *, reference: date, default_currency: str = "INR") -> Dict[str, NormalizedValue]:
    """
    Normalize a flat field map. Blank values are dropped (treated as missing).
    When two raw keys alias the same canonical field, the first non-blank wins.
    """
    out: Dict[str, NormalizedValue] = {}
    for key, raw in (data or {}).items():
        if is_blank(raw):
            continue
        field = canonical_field(key)
        if field in out:
            continue
        out[field] = normalize_value(field, raw, reference=reference, default_currency=default_currency)
    return out

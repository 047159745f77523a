# -*- coding: utf-8 -*-
"""
Pairwise comparison of normalized claimed vs verified fields.

Every field present on either side ends up in exactly one of `matches` or
`discrepancies` (or is skipped when it is optional for the check type and one
side did not supply it).
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from bgv_pipeline.models import Discrepancy, Match, Severity
from bgv_pipeline.tools.normalizer import FIELD_KINDS, NormalizedValue, field_kind, field_label
from bgv_pipeline.tools.settings import EngineSettings

LOGGER = logging.getLogger(__name__)

_DATE_KINDS = ("date_range", "date", "duration")
_DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class DetectorOptions:
    date_tolerance_days: int = 0
    date_tolerance_months: int = 0
    optional_fields: FrozenSet[str] = frozenset()


@dataclass
class DetectionResult:
    discrepancies: List[Discrepancy] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)

    @property
    def match_rate(self) -> float:
        total = len(self.matches) + len(self.discrepancies)
        if total == 0:
            return 100.0
        return round(len(self.matches) / total * 100, 1)


# ------------------------------ Helpers --------------------------------------

def _field_order(keys: set[str]) -> List[str]:
    known = [k for k in FIELD_KINDS if k in keys]
    return known + sorted(keys - set(FIELD_KINDS))


def _discrepancy(name: str, claimed: Optional[NormalizedValue], verified: Optional[NormalizedValue],
                 severity: Severity, difference: Optional[str] = None, reason: str = "mismatch") -> Discrepancy:
    return Discrepancy(
        field=name,
        label=field_label(name),
        employee_value=claimed.display if claimed else None,
        hr_value=verified.display if verified else None,
        severity=severity,
        difference=difference,
        reason=reason,
    )


def _match(name: str, claimed: NormalizedValue, verified: NormalizedValue) -> Match:
    low = "low" in (claimed.confidence, verified.confidence)
    return Match(field=name, label=field_label(name), confidence="low" if low else "high")


def date_delta_days(kind: str, claimed: NormalizedValue, verified: NormalizedValue) -> int:
    if kind == "date_range":
        (s1, e1), (s2, e2) = claimed.value, verified.value
        return max(abs((s1 - s2).days), abs((e1 - e2).days))
    if kind == "date":
        return abs((claimed.value - verified.value).days)
    if kind == "duration":
        return int(round(abs(claimed.value - verified.value) * _DAYS_PER_MONTH))
    raise ValueError(f"Not a date kind: {kind}")


def _add_months(day: date, months: int) -> date:
    index = day.month - 1 + months
    year, month = day.year + index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _within_months(a: date, b: date, months: int) -> bool:
    lo, hi = sorted((a, b))
    return hi <= _add_months(lo, months)


def within_month_tolerance(kind: str, claimed: NormalizedValue, verified: NormalizedValue, months: int) -> bool:
    """Calendar-month tolerance; UAN tenure is reported at month granularity."""
    if months <= 0:
        return False
    if kind == "date_range":
        return all(_within_months(c, v, months) for c, v in zip(claimed.value, verified.value))
    if kind == "date":
        return _within_months(claimed.value, verified.value, months)
    return abs(claimed.value - verified.value) <= months


def date_severity(days: int, tolerance: int, settings: EngineSettings) -> Optional[Severity]:
    """None means within tolerance (a match)."""
    if days <= tolerance:
        return None
    if days <= settings.date_medium_max_days:
        return Severity.MEDIUM
    return Severity.HIGH


def salary_severity(pct: float, settings: EngineSettings) -> Optional[Severity]:
    if pct <= settings.salary_match_max_pct:
        return None
    if pct <= settings.salary_low_max_pct:
        return Severity.LOW
    if pct <= settings.salary_medium_max_pct:
        return Severity.MEDIUM
    return Severity.HIGH


def _compare_text(kind: str, claimed: NormalizedValue, verified: NormalizedValue,
                  settings: EngineSettings) -> Tuple[Optional[Severity], Optional[str]]:
    if claimed.value == verified.value:
        return None, None
    edits = Levenshtein.distance(claimed.value, verified.value)
    difference = f"{edits} character edit(s)"
    if edits <= settings.fuzzy_max_edits:
        return Severity.LOW, difference
    if kind in ("name", "company"):
        return Severity.HIGH, difference
    return Severity.MEDIUM, difference


def _compare_money(claimed: NormalizedValue, verified: NormalizedValue,
                   settings: EngineSettings) -> Tuple[Optional[Severity], Optional[str]]:
    c_amount, c_currency = claimed.value
    v_amount, v_currency = verified.value
    if c_currency != v_currency:
        return Severity.MEDIUM, f"currency {c_currency} vs {v_currency}"
    base = max(abs(c_amount), abs(v_amount))
    pct = 0.0 if base == 0 else abs(c_amount - v_amount) / base * 100
    delta = abs(c_amount - v_amount)
    return salary_severity(pct, settings), f"{pct:.1f}% ({delta:,.0f} {c_currency})"


def compare_pair(name: str, claimed: NormalizedValue, verified: NormalizedValue,
                 options: DetectorOptions, settings: EngineSettings) -> Optional[Discrepancy]:
    """Compare two present values; None means they match."""
    if claimed.unparsed or verified.unparsed:
        return _discrepancy(name, claimed, verified, Severity.MEDIUM, "unparsable value", reason="unparsed")

    kind = field_kind(name)
    if kind in ("name", "company", "text"):
        severity, difference = _compare_text(kind, claimed, verified, settings)
    elif kind in _DATE_KINDS:
        days = date_delta_days(kind, claimed, verified)
        difference = f"{days} days"
        if within_month_tolerance(kind, claimed, verified, options.date_tolerance_months):
            severity = None
        else:
            severity = date_severity(days, options.date_tolerance_days, settings)
    elif kind == "money":
        severity, difference = _compare_money(claimed, verified, settings)
    elif kind == "identifier":
        severity, difference = (None, None) if claimed.value == verified.value else (Severity.HIGH, None)
    else:
        raise ValueError(f"Unhandled field kind: {kind}")

    if severity is None:
        return None
    return _discrepancy(name, claimed, verified, severity, difference)


# ------------------------------ Public API -----------------------------------

def detect(claimed: Dict[str, NormalizedValue], verified: Dict[str, NormalizedValue],
           options: DetectorOptions, settings: EngineSettings) -> DetectionResult:
    result = DetectionResult()
    for name in _field_order(set(claimed) | set(verified)):
        c, v = claimed.get(name), verified.get(name)
        if c is None or v is None:
            if name in options.optional_fields:
                LOGGER.debug("Skipping optional field %s (one side missing)", name)
                continue
            result.discrepancies.append(_discrepancy(name, c, v, Severity.MEDIUM, "missing on one side", reason="missing"))
            continue
        found = compare_pair(name, c, v, options, settings)
        if found is None:
            result.matches.append(_match(name, c, v))
        else:
            result.discrepancies.append(found)
    return result

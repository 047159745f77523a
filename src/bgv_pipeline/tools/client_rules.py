# -*- coding: utf-8 -*-
"""
Client rule evaluator.

Design
------
- Instruction ids selected at client onboarding form a closed set (`Instruction`).
- Each id maps to one immutable `RuleSpec` in CATALOG, built once at import.
- A RuleSpec has two hooks:
    prepare(ctx, options)  -> DetectorOptions   (runs before discrepancy detection)
    evaluate(ctx)          -> RuleOutcome       (runs after detection and scoring)
- SKU tier rules (Maximum Discrepancies, Severity Tolerance, Critical Fields Match)
  are evaluated for every check, on top of the client's own instructions.
- Unknown ids raise UnknownInstructionError; nothing is silently ignored.
- Outcomes never decide the zone directly; `aggregate` folds them into a
  RuleVerdict which the zone classifier consumes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from types import MappingProxyType
from typing import Callable, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from crewai.tools import tool

from bgv_pipeline.models import (
    Action,
    CheckType,
    Discrepancy,
    Escalation,
    Instruction,
    RuleResult,
    Severity,
    VerificationContext,
    parse_instructions,
)
from bgv_pipeline.tools.discrepancy import DetectorOptions
from bgv_pipeline.tools.normalizer import (
    DATE_OF_JOINING,
    DATE_OF_LEAVING,
    EMPLOYMENT_DATES,
    TENURE,
    parse_date,
)
from bgv_pipeline.tools.settings import EngineSettings, TierPolicy

LOGGER = logging.getLogger(__name__)

UAN_TOLERANCE_DAYS = 30
UAN_TOLERANCE_MONTHS = 1
PF_MONTHS_REQUIRED = 3
MIN_FOLLOWUPS = 5
MIN_HR_ATTEMPTS = 1
COMPANY_NOT_FOUND_SLA = "2-3 days"

# Date fields a tier's "employmentDates" critical entry also covers
_DATE_FIELDS = {EMPLOYMENT_DATES, DATE_OF_JOINING, DATE_OF_LEAVING, TENURE}


# ------------------------------ Rule plumbing --------------------------------

@dataclass(frozen=True)
class RuleContext:
    check_type: CheckType
    context: VerificationContext
    settings: EngineSettings
    tier: TierPolicy
    reference_date: date
    verified_fields: FrozenSet[str] = frozenset()
    discrepancies: Tuple[Discrepancy, ...] = ()


@dataclass(frozen=True)
class RuleOutcome:
    passed: Optional[bool]                      # None == indeterminate
    expected: str
    actual: str
    force_red: bool = False
    escalate_if_red: bool = False
    floor_yellow: bool = False
    block: bool = False
    action: Optional[Action] = None
    sla: Optional[str] = None


Prepare = Callable[[RuleContext, DetectorOptions], DetectorOptions]
Evaluate = Callable[[RuleContext], RuleOutcome]


def _no_prepare(ctx: RuleContext, options: DetectorOptions) -> DetectorOptions:
    return options


@dataclass(frozen=True)
class RuleSpec:
    name: str
    description: str
    evaluate: Evaluate
    prepare: Prepare = _no_prepare
    gate: bool = False                          # report-only; enforced by the caller


@dataclass
class RuleVerdict:
    results: List[RuleResult] = field(default_factory=list)
    forced_red: bool = False
    floor_yellow: bool = False
    indeterminate: List[str] = field(default_factory=list)
    blocked: bool = False
    gate_satisfied: bool = True
    escalations: List[Escalation] = field(default_factory=list)
    red_escalations: List[Escalation] = field(default_factory=list)


def _yes_no(flag: Optional[bool]) -> str:
    if flag is None:
        return "unknown"
    return "yes" if flag else "no"


# ------------------------------ Instruction rules ----------------------------

def _uses_uan_tenure(ctx: RuleContext) -> bool:
    source = (ctx.context.tenure_source or "UAN").strip().upper()
    return source == "UAN"


def _prepare_uan_tolerance(ctx: RuleContext, options: DetectorOptions) -> DetectorOptions:
    if not _uses_uan_tenure(ctx):
        return options
    return replace(
        options,
        date_tolerance_days=max(options.date_tolerance_days, UAN_TOLERANCE_DAYS),
        date_tolerance_months=max(options.date_tolerance_months, UAN_TOLERANCE_MONTHS),
    )


def _eval_uan_tolerance(ctx: RuleContext) -> RuleOutcome:
    applied = _uses_uan_tenure(ctx)
    actual = f"{UAN_TOLERANCE_DAYS} days (one calendar month) applied" if applied else f"not applied (tenure source {ctx.context.tenure_source})"
    return RuleOutcome(passed=True, expected=f"Date tolerance of {UAN_TOLERANCE_DAYS} days for UAN tenure", actual=actual)


def _dol_available(ctx: RuleContext) -> Optional[bool]:
    if ctx.context.dol_available is not None:
        return ctx.context.dol_available
    if DATE_OF_LEAVING in ctx.verified_fields or EMPLOYMENT_DATES in ctx.verified_fields:
        return True
    return None


def _pf_substitutes(ctx: RuleContext) -> bool:
    months = ctx.context.pf_deduction_months
    return _dol_available(ctx) is False and months is not None and months >= PF_MONTHS_REQUIRED


def _prepare_dol_pf(ctx: RuleContext, options: DetectorOptions) -> DetectorOptions:
    if not _pf_substitutes(ctx):
        return options
    return replace(options, optional_fields=options.optional_fields | {DATE_OF_LEAVING})


def _eval_dol_pf(ctx: RuleContext) -> RuleOutcome:
    expected = f"DOL available, or PF deducted for >= {PF_MONTHS_REQUIRED} months"
    dol = _dol_available(ctx)
    if dol:
        return RuleOutcome(passed=True, expected=expected, actual="DOL available")
    months = ctx.context.pf_deduction_months
    if dol is None or months is None:
        return RuleOutcome(passed=None, expected=expected,
                           actual=f"DOL {_yes_no(dol)}, PF months {months if months is not None else 'unknown'}")
    if months >= PF_MONTHS_REQUIRED:
        return RuleOutcome(passed=True, expected=expected, actual=f"DOL missing, PF deducted {months} months")
    return RuleOutcome(passed=False, expected=expected, actual=f"DOL missing, PF deducted {months} months",
                       floor_yellow=True)


def _eval_overseas(ctx: RuleContext) -> RuleOutcome:
    domestic = ctx.settings.domestic_jurisdiction
    expected = f"Employer in {domestic}"
    jurisdiction = (ctx.context.jurisdiction or "").strip().upper()
    if not jurisdiction:
        return RuleOutcome(passed=True, expected=expected, actual="jurisdiction not reported")
    if jurisdiction == domestic:
        return RuleOutcome(passed=True, expected=expected, actual=jurisdiction)
    return RuleOutcome(passed=False, expected=expected, actual=jurisdiction,
                       force_red=True, action=Action.ESCALATE_CSE)


def _eval_govt(ctx: RuleContext) -> RuleOutcome:
    govt = ctx.context.government_org
    outcome = RuleOutcome(passed=not govt, expected="Non-government employer", actual=f"government org: {_yes_no(govt)}")
    if govt:
        return replace(outcome, force_red=True, action=Action.ESCALATE_CSE)
    return outcome


def _eval_company_not_found(ctx: RuleContext) -> RuleOutcome:
    missing = ctx.context.company_not_found
    outcome = RuleOutcome(passed=not missing, expected="Company found in verification lookup",
                          actual=f"company not found: {_yes_no(missing)}")
    if missing:
        return replace(outcome, force_red=True, action=Action.ESCALATE_CSE, sla=COMPANY_NOT_FOUND_SLA)
    return outcome


def _eval_experience_letter(ctx: RuleContext) -> RuleOutcome:
    uploaded = ctx.context.experience_letter_uploaded
    expected = "Experience letter uploaded"
    actual = f"uploaded: {_yes_no(uploaded)}"
    if uploaded:
        return RuleOutcome(passed=True, expected=expected, actual=actual)
    return RuleOutcome(passed=None if uploaded is None else False, expected=expected, actual=actual,
                       block=True, action=Action.HOLD)


def _eval_red_escalate(ctx: RuleContext) -> RuleOutcome:
    return RuleOutcome(passed=True, expected="RED checks escalated to CSE", actual="applies to RED outcomes only",
                       escalate_if_red=True, action=Action.ESCALATE_CSE)


def _eval_followups(ctx: RuleContext) -> RuleOutcome:
    count = ctx.context.followup_count or 0
    return RuleOutcome(passed=count >= MIN_FOLLOWUPS, expected=f">= {MIN_FOLLOWUPS} follow-ups",
                       actual=f"{count} follow-ups")


def _eval_hr_attempts(ctx: RuleContext) -> RuleOutcome:
    attempts = ctx.context.hr_attempts or 0
    return RuleOutcome(passed=attempts >= MIN_HR_ATTEMPTS, expected=f">= {MIN_HR_ATTEMPTS} HR contact attempt",
                       actual=f"{attempts} attempts")


def _eval_no_verbal(ctx: RuleContext) -> RuleOutcome:
    method = (ctx.context.verification_method or "").strip().lower()
    expected = "Written verification"
    if not method:
        return RuleOutcome(passed=None, expected=expected, actual="method unknown")
    if method == "verbal":
        return RuleOutcome(passed=False, expected=expected, actual=method, floor_yellow=True)
    return RuleOutcome(passed=True, expected=expected, actual=method)


def _eval_insufficiency(ctx: RuleContext) -> RuleOutcome:
    uploaded = ctx.context.experience_letter_uploaded
    expected = "Experience letter on file"
    actual = f"uploaded: {_yes_no(uploaded)}"
    if uploaded is None:
        return RuleOutcome(passed=None, expected=expected, actual=actual)
    if uploaded:
        return RuleOutcome(passed=True, expected=expected, actual=actual)
    return RuleOutcome(passed=False, expected=expected, actual=actual,
                       floor_yellow=True, action=Action.RAISE_INSUFFICIENCY)


def _eval_utv_due(ctx: RuleContext) -> RuleOutcome:
    expected = f"Verified on or before due date ({ctx.reference_date.isoformat()})"
    raw = ctx.context.due_date
    if not raw:
        return RuleOutcome(passed=True, expected=expected, actual="no due date")
    due, _ = parse_date(raw)
    if due is None:
        return RuleOutcome(passed=False, expected=expected, actual=f"unparsable due date {raw!r}", floor_yellow=True)
    if ctx.reference_date <= due:
        return RuleOutcome(passed=True, expected=expected, actual=f"due {due.isoformat()}")
    return RuleOutcome(passed=False, expected=expected, actual=f"past due {due.isoformat()}", floor_yellow=True)


# ------------------------------ Tier rules -----------------------------------

def _eval_max_discrepancies(ctx: RuleContext) -> RuleOutcome:
    allowed = ctx.tier.max_discrepancies
    count = len(ctx.discrepancies)
    return RuleOutcome(passed=count <= allowed, expected=f"<= {allowed}", actual=str(count),
                       floor_yellow=count > allowed)


def _eval_severity_tolerance(ctx: RuleContext) -> RuleOutcome:
    green = ctx.tier.green_severities
    expected = "Only " + (", ".join(sorted(s.value for s in green)) or "no") + " severity allowed"
    seen = sorted({d.severity.value for d in ctx.discrepancies})
    actual = ", ".join(seen) or "none"
    if any(d.severity in ctx.tier.red_severities for d in ctx.discrepancies):
        return RuleOutcome(passed=False, expected=expected, actual=actual, force_red=True)
    if any(d.severity not in green for d in ctx.discrepancies):
        return RuleOutcome(passed=False, expected=expected, actual=actual, floor_yellow=True)
    return RuleOutcome(passed=True, expected=expected, actual=actual)


def _critical_hit(name: str, critical: Iterable[str]) -> bool:
    critical = set(critical)
    if name in critical:
        return True
    return EMPLOYMENT_DATES in critical and name in _DATE_FIELDS


def _eval_critical_fields(ctx: RuleContext) -> RuleOutcome:
    critical = ctx.tier.critical_fields
    hits = [d.field for d in ctx.discrepancies if _critical_hit(d.field, critical)]
    expected = "Match on " + (", ".join(critical) or "no critical fields")
    actual = "mismatch on " + ", ".join(hits) if hits else "all matched"
    return RuleOutcome(passed=not hits, expected=expected, actual=actual, floor_yellow=bool(hits))


# ------------------------------ Catalog --------------------------------------

CATALOG: Mapping[Instruction, RuleSpec] = MappingProxyType({
    Instruction.UAN_30DAY_TOLERANCE: RuleSpec(
        Instruction.UAN_30DAY_TOLERANCE.value,
        "30 days tolerance in UAN tenure dates",
        _eval_uan_tolerance,
        _prepare_uan_tolerance,
    ),
    Instruction.UAN_DOL_PF_CHECK: RuleSpec(
        Instruction.UAN_DOL_PF_CHECK.value,
        "If DOL not available, confirm tenure via 3 months of PF deduction",
        _eval_dol_pf,
        _prepare_dol_pf,
    ),
    Instruction.NO_OVERSEAS_CHECKS: RuleSpec(
        Instruction.NO_OVERSEAS_CHECKS.value,
        "Do not process overseas checks, escalate to CSE",
        _eval_overseas,
    ),
    Instruction.GOVT_ORG_ESCALATE: RuleSpec(
        Instruction.GOVT_ORG_ESCALATE.value,
        "Government organisation checks are escalated to CSE",
        _eval_govt,
    ),
    Instruction.COMPANY_NOT_FOUND_ESCALATE: RuleSpec(
        Instruction.COMPANY_NOT_FOUND_ESCALATE.value,
        "Company not found: escalate with a 2-3 day SLA",
        _eval_company_not_found,
    ),
    Instruction.REQUIRE_EXPERIENCE_LETTER: RuleSpec(
        Instruction.REQUIRE_EXPERIENCE_LETTER.value,
        "Experience letter is mandatory before classification",
        _eval_experience_letter,
    ),
    Instruction.RED_CHECKS_ESCALATE: RuleSpec(
        Instruction.RED_CHECKS_ESCALATE.value,
        "Escalate RED checks to CSE",
        _eval_red_escalate,
    ),
    Instruction.MANDATORY_5_FOLLOWUPS: RuleSpec(
        Instruction.MANDATORY_5_FOLLOWUPS.value,
        "Minimum 5 follow-ups before closure",
        _eval_followups,
        gate=True,
    ),
    Instruction.HR_ATTEMPTS_REQUIRED: RuleSpec(
        Instruction.HR_ATTEMPTS_REQUIRED.value,
        "HR must be contacted before classification",
        _eval_hr_attempts,
        gate=True,
    ),
    Instruction.NO_VERBAL_CLOSURES: RuleSpec(
        Instruction.NO_VERBAL_CLOSURES.value,
        "Verbal confirmations cannot close a check",
        _eval_no_verbal,
    ),
    Instruction.INSUFFICIENCY_NO_EXP_LETTER: RuleSpec(
        Instruction.INSUFFICIENCY_NO_EXP_LETTER.value,
        "Raise insufficiency when the experience letter is missing",
        _eval_insufficiency,
    ),
    Instruction.UTV_BEFORE_DUE: RuleSpec(
        Instruction.UTV_BEFORE_DUE.value,
        "Unable-to-verify only after the due date",
        _eval_utv_due,
    ),
})

TIER_RULES: Tuple[RuleSpec, ...] = (
    RuleSpec("Maximum Discrepancies", "Discrepancy count within the SKU limit", _eval_max_discrepancies),
    RuleSpec("Severity Tolerance", "Discrepancy severities tolerated by the SKU", _eval_severity_tolerance),
    RuleSpec("Critical Fields Match", "SKU critical fields must match", _eval_critical_fields),
)


def build_policy_rules(instruction_ids: Iterable[str]) -> Tuple[RuleSpec, ...]:
    """
    Resolve instruction ids to catalog entries (order kept, duplicates dropped),
    followed by the tier rules. Unknown ids raise UnknownInstructionError.
    """
    resolved: List[RuleSpec] = []
    seen: set[Instruction] = set()
    for instruction in parse_instructions(instruction_ids):
        if instruction not in seen:
            seen.add(instruction)
            resolved.append(CATALOG[instruction])
    return tuple(resolved) + TIER_RULES


def prepare_options(rules: Iterable[RuleSpec], ctx: RuleContext, options: DetectorOptions) -> DetectorOptions:
    for rule in rules:
        options = rule.prepare(ctx, options)
    return options


def gate_status(rules: Iterable[RuleSpec], ctx: RuleContext) -> Tuple[bool, List[RuleResult]]:
    """Report-only gate check (follow-up / HR attempt minimums)."""
    results = [_to_result(rule, rule.evaluate(ctx)) for rule in rules if rule.gate]
    return all(r.passed for r in results), results


def _to_result(rule: RuleSpec, outcome: RuleOutcome) -> RuleResult:
    return RuleResult(name=rule.name, description=rule.description,
                      expected=outcome.expected, actual=outcome.actual, passed=outcome.passed)


def aggregate(rules: Iterable[RuleSpec], ctx: RuleContext) -> RuleVerdict:
    verdict = RuleVerdict()
    for rule in rules:
        outcome = rule.evaluate(ctx)
        verdict.results.append(_to_result(rule, outcome))

        if rule.gate:
            verdict.gate_satisfied = verdict.gate_satisfied and bool(outcome.passed)
            continue
        if outcome.passed is None:
            verdict.indeterminate.append(rule.name)
        if outcome.block:
            verdict.blocked = True
        if outcome.force_red:
            verdict.forced_red = True
        if outcome.floor_yellow:
            verdict.floor_yellow = True

        if outcome.action is None or outcome.action is Action.HOLD:
            continue
        escalation = Escalation(rule=rule.name, action=outcome.action, sla=outcome.sla)
        if outcome.escalate_if_red:
            verdict.red_escalations.append(escalation)
        else:
            verdict.escalations.append(escalation)

    if verdict.indeterminate:
        LOGGER.warning("Indeterminate client rules: %s", ", ".join(verdict.indeterminate))
    return verdict


# ------------------------------ Tool -----------------------------------------

@tool("fetch_client_rules")
def fetch_client_rules(instructions: Optional[List[str]] = None) -> str:
    """
    Describe a client's special instructions plus the SKU tier rules.
    Returns JSON: {"rules": [{"name","description","gate"}], "unknown": [...]}.
    Unknown ids are reported, not raised, so the analyst can mention them.
    """
    rules: List[dict] = []
    unknown: List[str] = []
    for raw in instructions or []:
        try:
            spec = CATALOG[Instruction(str(raw).strip().lower())]
        except ValueError:
            unknown.append(str(raw))
            continue
        rules.append({"name": spec.name, "description": spec.description, "gate": spec.gate})
    rules.extend({"name": r.name, "description": r.description, "gate": False} for r in TIER_RULES)
    return json.dumps({"rules": rules, "unknown": unknown}, ensure_ascii=False)

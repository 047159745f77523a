# test/test_client_rules.py
"""
Client rule catalog: each instruction's verdict, the SKU tier rules and the
crewai tool that describes them to the analyst agent.
"""

import json
from datetime import date

import pytest
from pydantic import ValidationError

from bgv_pipeline.errors import InputError, UnknownInstructionError
from bgv_pipeline.models import (
    Action,
    CheckType,
    Client,
    ClientPolicy,
    Discrepancy,
    Severity,
    SkuTier,
    VerificationContext,
)
from bgv_pipeline.tools import client_rules as cr
from bgv_pipeline.tools.discrepancy import DetectorOptions

REF = date(2025, 1, 15)


def _ctx(settings, *, sku=SkuTier.STANDARD, discrepancies=(), verified_fields=(), **context):
    return cr.RuleContext(
        check_type=CheckType.EMPLOYMENT,
        context=VerificationContext(**context),
        settings=settings,
        tier=settings.tier(sku),
        reference_date=REF,
        verified_fields=frozenset(verified_fields),
        discrepancies=tuple(discrepancies),
    )


def _d(field, severity):
    return Discrepancy(field=field, label=field, severity=severity)


def _verdict(settings, ids, **kwargs):
    return cr.aggregate(cr.build_policy_rules(ids), _ctx(settings, **kwargs))


def _result(verdict, name):
    return next(r for r in verdict.results if r.name == name)


# ------------------------------ Catalog --------------------------------------

def test_catalog_covers_every_instruction():
    assert set(cr.CATALOG) == set(cr.Instruction)
    with pytest.raises(TypeError):
        cr.CATALOG[cr.Instruction.UTV_BEFORE_DUE] = None  # read-only


def test_unknown_instruction_raises():
    with pytest.raises(UnknownInstructionError) as ei:
        cr.build_policy_rules(["uan_30day_tolerance", "fly_to_the_moon"])
    assert isinstance(ei.value, InputError)
    assert ei.value.details["instructions"] == ["fly_to_the_moon"]


def test_policy_rejects_unknown_instruction_ids():
    with pytest.raises(ValidationError):
        ClientPolicy(special_instructions=["uan_30_day_tolerance_typo"])
    with pytest.raises(ValidationError):
        Client(client_id="CL-1", company_name="Acme", special_instructions=["red_check_escalate"])


def test_policy_stores_canonical_instruction_ids():
    policy = ClientPolicy(special_instructions=[" UAN_30DAY_TOLERANCE", "red_checks_escalate"])
    assert policy.special_instructions == ["uan_30day_tolerance", "red_checks_escalate"]
    client = Client(client_id="CL-1", company_name="Acme", special_instructions=["NO_VERBAL_CLOSURES"])
    assert client.policy().special_instructions == ["no_verbal_closures"]


def test_ids_are_case_insensitive_and_deduplicated():
    rules = cr.build_policy_rules(["UAN_30DAY_TOLERANCE", "uan_30day_tolerance "])
    names = [r.name for r in rules]
    assert names == ["uan_30day_tolerance", "Maximum Discrepancies", "Severity Tolerance", "Critical Fields Match"]


def test_tier_rules_apply_without_instructions():
    assert [r.name for r in cr.build_policy_rules([])] == [r.name for r in cr.TIER_RULES]


# ------------------------------ UAN tolerance --------------------------------

def test_uan_tolerance_widens_date_tolerance(settings):
    rules = cr.build_policy_rules(["uan_30day_tolerance"])
    options = cr.prepare_options(rules, _ctx(settings), DetectorOptions())
    assert options.date_tolerance_days == cr.UAN_TOLERANCE_DAYS
    assert options.date_tolerance_months == cr.UAN_TOLERANCE_MONTHS


def test_uan_tolerance_skipped_for_hr_tenure(settings):
    rules = cr.build_policy_rules(["uan_30day_tolerance"])
    options = cr.prepare_options(rules, _ctx(settings, tenure_source="HR"), DetectorOptions())
    assert options.date_tolerance_days == 0
    assert options.date_tolerance_months == 0
    assert "not applied" in _result(cr.aggregate(rules, _ctx(settings, tenure_source="HR")), "uan_30day_tolerance").actual


# ------------------------------ DOL / PF -------------------------------------

def test_dol_available_passes(settings):
    verdict = _verdict(settings, ["uan_dol_pf_check"], verified_fields={"dateOfLeaving"})
    assert _result(verdict, "uan_dol_pf_check").passed is True


def test_pf_months_substitute_for_missing_dol(settings):
    rules = cr.build_policy_rules(["uan_dol_pf_check"])
    ctx = _ctx(settings, dol_available=False, pf_deduction_months=4)
    options = cr.prepare_options(rules, ctx, DetectorOptions())
    assert "dateOfLeaving" in options.optional_fields
    assert _result(cr.aggregate(rules, ctx), "uan_dol_pf_check").passed is True


def test_short_pf_history_floors_yellow(settings):
    verdict = _verdict(settings, ["uan_dol_pf_check"], dol_available=False, pf_deduction_months=2)
    assert _result(verdict, "uan_dol_pf_check").passed is False
    assert verdict.floor_yellow is True


def test_unknown_pf_history_is_indeterminate(settings):
    verdict = _verdict(settings, ["uan_dol_pf_check"])
    assert _result(verdict, "uan_dol_pf_check").passed is None
    assert verdict.indeterminate == ["uan_dol_pf_check"]


# ------------------------------ Escalations ----------------------------------

def test_overseas_employer_forces_red(settings):
    verdict = _verdict(settings, ["no_overseas_checks"], jurisdiction="sg")
    assert verdict.forced_red is True
    assert [e.action for e in verdict.escalations] == [Action.ESCALATE_CSE]


def test_domestic_or_unreported_jurisdiction_passes(settings):
    assert _verdict(settings, ["no_overseas_checks"], jurisdiction="IN").forced_red is False
    assert _verdict(settings, ["no_overseas_checks"]).forced_red is False


def test_domestic_jurisdiction_comes_from_env(monkeypatch):
    from bgv_pipeline.tools.settings import load_settings

    monkeypatch.setenv("BGV_DOMESTIC_JURISDICTION", "sg")
    verdict = _verdict(load_settings(), ["no_overseas_checks"], jurisdiction="SG")
    assert verdict.forced_red is False


def test_government_org_forces_red(settings):
    verdict = _verdict(settings, ["govt_org_escalate"], government_org=True)
    assert verdict.forced_red is True
    assert _verdict(settings, ["govt_org_escalate"]).forced_red is False


def test_company_not_found_escalates_with_sla(settings):
    verdict = _verdict(settings, ["company_not_found_escalate"], company_not_found=True)
    assert verdict.forced_red is True
    assert verdict.escalations[0].sla == cr.COMPANY_NOT_FOUND_SLA


def test_red_checks_escalate_is_held_back_until_red(settings):
    verdict = _verdict(settings, ["red_checks_escalate"])
    assert verdict.forced_red is False
    assert verdict.escalations == []
    assert [e.action for e in verdict.red_escalations] == [Action.ESCALATE_CSE]


# ------------------------------ Blocking / floors -----------------------------

@pytest.mark.parametrize("uploaded, passed", [(False, False), (None, None)])
def test_missing_experience_letter_blocks(settings, uploaded, passed):
    verdict = _verdict(settings, ["require_experience_letter"], experience_letter_uploaded=uploaded)
    assert verdict.blocked is True
    assert _result(verdict, "require_experience_letter").passed is passed
    assert verdict.escalations == []  # HOLD is not an escalation


def test_uploaded_experience_letter_does_not_block(settings):
    verdict = _verdict(settings, ["require_experience_letter"], experience_letter_uploaded=True)
    assert verdict.blocked is False


def test_insufficiency_raised_without_letter(settings):
    verdict = _verdict(settings, ["insufficiency_no_exp_letter"], experience_letter_uploaded=False)
    assert verdict.floor_yellow is True
    assert [e.action for e in verdict.escalations] == [Action.RAISE_INSUFFICIENCY]


def test_verbal_closure_floors_yellow(settings):
    assert _verdict(settings, ["no_verbal_closures"], verification_method="Verbal").floor_yellow is True
    assert _verdict(settings, ["no_verbal_closures"], verification_method="written").floor_yellow is False
    assert _verdict(settings, ["no_verbal_closures"]).indeterminate == ["no_verbal_closures"]


@pytest.mark.parametrize("due, floor", [
    (None, False), ("2025-02-01", False), ("2025-01-15", False), ("2024-12-31", True), ("someday", True),
])
def test_utv_before_due(settings, due, floor):
    assert _verdict(settings, ["utv_before_due"], due_date=due).floor_yellow is floor


# ------------------------------ Gates ----------------------------------------

def test_gates_are_reported_not_enforced(settings):
    verdict = _verdict(settings, ["mandatory_5_followups", "hr_attempts_required"], followup_count=2, hr_attempts=1)
    assert verdict.gate_satisfied is False
    assert verdict.forced_red is False and verdict.floor_yellow is False
    assert verdict.indeterminate == []


def test_gate_status(settings):
    rules = cr.build_policy_rules(["mandatory_5_followups", "hr_attempts_required"])
    ok, results = cr.gate_status(rules, _ctx(settings, followup_count=5, hr_attempts=1))
    assert ok is True
    assert [r.name for r in results] == ["mandatory_5_followups", "hr_attempts_required"]

    ok, _ = cr.gate_status(rules, _ctx(settings, followup_count=5))
    assert ok is False


# ------------------------------ Tier rules -----------------------------------

def test_high_severity_forces_red_on_every_tier(settings):
    for sku in SkuTier:
        verdict = _verdict(settings, [], sku=sku, discrepancies=[_d("salary", Severity.HIGH)])
        assert verdict.forced_red is True, sku


def test_severity_outside_tier_tolerance_floors_yellow(settings):
    medium = [_d("salary", Severity.MEDIUM)]
    assert _verdict(settings, [], sku=SkuTier.STANDARD, discrepancies=medium).floor_yellow is True
    assert _verdict(settings, [], sku=SkuTier.BASIC, discrepancies=medium).floor_yellow is False


def test_too_many_discrepancies_floor_yellow(settings):
    lows = [_d("department", Severity.LOW), _d("location", Severity.LOW), _d("grade", Severity.LOW)]
    verdict = _verdict(settings, [], sku=SkuTier.STANDARD, discrepancies=lows)
    assert _result(verdict, "Maximum Discrepancies").passed is False
    assert verdict.floor_yellow is True


def test_critical_field_mismatch_floors_yellow(settings):
    verdict = _verdict(settings, [], sku=SkuTier.STANDARD, discrepancies=[_d("designation", Severity.LOW)])
    assert _result(verdict, "Critical Fields Match").actual == "mismatch on designation"
    assert verdict.floor_yellow is True


def test_employment_dates_critical_covers_joining_date(settings):
    verdict = _verdict(settings, [], sku=SkuTier.PREMIUM, discrepancies=[_d("dateOfJoining", Severity.LOW)])
    assert _result(verdict, "Critical Fields Match").passed is False


def test_clean_check_passes_tier_rules(settings):
    verdict = _verdict(settings, [])
    assert all(r.passed for r in verdict.results)
    assert not (verdict.forced_red or verdict.floor_yellow or verdict.blocked)


# ------------------------------ Tool -----------------------------------------

def test_fetch_client_rules_tool_describes_rules():
    payload = json.loads(cr.fetch_client_rules.run(instructions=["mandatory_5_followups", "bogus"]))
    names = [r["name"] for r in payload["rules"]]
    assert names[0] == "mandatory_5_followups"
    assert payload["rules"][0]["gate"] is True
    assert "Severity Tolerance" in names
    assert payload["unknown"] == ["bogus"]

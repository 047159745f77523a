# -*- coding: utf-8 -*-
"""
Comparison pipeline: ComparisonRequest -> ComparisonResult.

normalize -> (rule prepare hooks) -> detect -> score -> (rule evaluate hooks) -> zone

Pure and synchronous: the AI signal, when used, is fetched by the caller
beforehand (see tools.ai_signal) and passed in.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import ValidationError as SchemaError
from jsonschema import validate as json_validate

from bgv_pipeline.errors import InputError
from bgv_pipeline.models import (
    Action,
    AiAnalysis,
    ComparisonRequest,
    ComparisonResult,
    Escalation,
    FieldMap,
    RuleEvaluation,
    RuleResult,
    Zone,
)
from bgv_pipeline.tools import client_rules
from bgv_pipeline.tools.client_rules import RuleContext, RuleSpec, RuleVerdict
from bgv_pipeline.tools.discrepancy import DetectionResult, DetectorOptions, detect
from bgv_pipeline.tools.normalizer import is_blank, normalize_fields
from bgv_pipeline.tools.risk import score
from bgv_pipeline.tools.settings import EngineSettings, load_settings
from bgv_pipeline.tools.zones import classify, summarize

LOGGER = logging.getLogger(__name__)

FIELD_MAP_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "propertyNames": {"minLength": 1},
    "additionalProperties": {"type": ["string", "number", "boolean", "null"]},
}


# ------------------------------ Helpers --------------------------------------

def _validate_field_map(data: Optional[FieldMap], side: str, check_id: str) -> None:
    if data is None:
        return
    try:
        json_validate(instance=data, schema=FIELD_MAP_SCHEMA)
    except SchemaError as exc:
        raise InputError(f"{side} is not a flat field map: {exc.message}", check_id=check_id) from exc


def _has_data(data: Optional[FieldMap]) -> bool:
    return bool(data) and any(not is_blank(v) for v in data.values())


def _rule_context(request: ComparisonRequest, settings: EngineSettings, reference: date,
                  verified_fields: frozenset[str] = frozenset()) -> RuleContext:
    return RuleContext(
        check_type=request.check_type,
        context=request.context,
        settings=settings,
        tier=settings.tier(request.client_policy.sku_name),
        reference_date=reference,
        verified_fields=verified_fields,
    )


def _rule_evaluation(request: ComparisonRequest, verdict: Optional[RuleVerdict], *, degraded: bool,
                     escalations: Optional[List[Escalation]] = None, results: Optional[List[RuleResult]] = None,
                     gate_satisfied: Optional[bool] = None) -> RuleEvaluation:
    if verdict is None:
        return RuleEvaluation(
            rules_applied=results or [],
            client_sku=request.client_policy.sku_name,
            degraded=degraded,
            gate_satisfied=True if gate_satisfied is None else gate_satisfied,
        )
    return RuleEvaluation(
        rules_applied=verdict.results,
        client_sku=request.client_policy.sku_name,
        degraded=degraded,
        indeterminate=verdict.indeterminate,
        forced_red=verdict.forced_red,
        escalations=verdict.escalations if escalations is None else escalations,
        gate_satisfied=verdict.gate_satisfied if gate_satisfied is None else gate_satisfied,
        blocked=verdict.blocked,
    )


def pending_result(request: ComparisonRequest, *, action: Action = Action.AWAIT_DATA,
                   reason: Optional[str] = None, rule_evaluation: Optional[RuleEvaluation] = None,
                   detection: Optional[DetectionResult] = None,
                   ai_analysis: Optional[AiAnalysis] = None) -> ComparisonResult:
    """PENDING carries no score; discrepancies are kept only for audit."""
    detection = detection or DetectionResult()
    return ComparisonResult(
        check_id=request.check_id,
        zone=Zone.PENDING,
        discrepancies=detection.discrepancies,
        matches=detection.matches,
        match_rate=detection.match_rate,
        rule_evaluation=rule_evaluation or _rule_evaluation(request, None, degraded=ai_analysis is None),
        ai_analysis=ai_analysis,
        summary=summarize(Zone.PENDING, action, None, len(detection.discrepancies), reason),
    )


def resolve_rules(request: ComparisonRequest) -> Tuple[RuleSpec, ...]:
    try:
        return client_rules.build_policy_rules(request.client_policy.special_instructions)
    except InputError as exc:
        exc.check_id = exc.check_id or request.check_id
        raise


def check_gates(request: ComparisonRequest, *, settings: Optional[EngineSettings] = None,
                reference_date: Optional[date] = None) -> Tuple[bool, List[RuleResult]]:
    """Follow-up / HR-attempt gates. Report-only; the caller decides whether to classify."""
    settings = settings or load_settings()
    rules = resolve_rules(request)
    ctx = _rule_context(request, settings, reference_date or date.today())
    return client_rules.gate_status(rules, ctx)


# ------------------------------ Public API -----------------------------------

def compare(request: ComparisonRequest, ai_analysis: Optional[AiAnalysis] = None, *,
            settings: Optional[EngineSettings] = None, reference_date: Optional[date] = None) -> ComparisonResult:
    settings = settings or load_settings()
    reference = reference_date or date.today()
    rules = resolve_rules(request)

    _validate_field_map(request.claimed_data, "claimedData", request.check_id)
    _validate_field_map(request.verified_data, "verifiedData", request.check_id)

    if not _has_data(request.claimed_data) or not _has_data(request.verified_data):
        missing = "claimedData" if not _has_data(request.claimed_data) else "verifiedData"
        LOGGER.info("Check %s pending: %s not available", request.check_id, missing)
        return pending_result(request, reason=f"{missing} not available", ai_analysis=ai_analysis)

    currency = settings.default_currency
    claimed = normalize_fields(request.claimed_data, reference=reference, default_currency=currency)
    verified = normalize_fields(request.verified_data, reference=reference, default_currency=currency)

    ctx = _rule_context(request, settings, reference, frozenset(verified))
    options = client_rules.prepare_options(
        rules, ctx,
        DetectorOptions(
            date_tolerance_days=settings.default_tolerance_days,
            optional_fields=settings.optional_fields.get(request.check_type, frozenset()),
        ),
    )
    detection = detect(claimed, verified, options, settings)
    risk = score(detection.discrepancies, ai_analysis, settings)
    if risk.degraded:
        LOGGER.warning("Check %s scored without AI signal (degraded mode)", request.check_id)

    verdict = client_rules.aggregate(rules, replace(ctx, discrepancies=tuple(detection.discrepancies)))

    if verdict.blocked:
        LOGGER.info("Check %s held at PENDING by client rule", request.check_id)
        return pending_result(
            request,
            action=Action.HOLD,
            reason="A mandatory client requirement is not met.",
            rule_evaluation=_rule_evaluation(request, verdict, degraded=risk.degraded),
            detection=detection,
            ai_analysis=ai_analysis,
        )

    decision = classify(risk, detection.discrepancies, verdict, settings)
    LOGGER.info("Check %s classified %s (score=%s, base=%s, discrepancies=%d)",
                request.check_id, decision.zone.value, risk.final, risk.base, len(detection.discrepancies))

    return ComparisonResult(
        check_id=request.check_id,
        zone=decision.zone,
        risk_score=risk.final,
        base_score=risk.base,
        priority=decision.priority,
        discrepancies=detection.discrepancies,
        matches=detection.matches,
        match_rate=detection.match_rate,
        rule_evaluation=_rule_evaluation(request, verdict, degraded=risk.degraded, escalations=decision.escalations),
        ai_analysis=ai_analysis,
        summary=summarize(decision.zone, decision.action, risk.final, len(detection.discrepancies)),
    )

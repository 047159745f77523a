# -*- coding: utf-8 -*-
"""
Zone classifier: risk score + rule verdict -> zone, priority, summary.

Decision order (first match wins):
  1. forced RED from a client/tier rule          -> RED, priority HIGH
  2. final score above red band                  -> RED, HIGH above the high-priority band else MEDIUM
  3. any HIGH discrepancy or score in yellow band -> YELLOW
  4. otherwise                                   -> GREEN
Fail-safe floors afterwards: a failed floor rule or an indeterminate rule lifts
GREEN to YELLOW (never lowers a zone).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, assert_never

from bgv_pipeline.models import Action, Discrepancy, Escalation, Priority, Severity, Summary, Zone
from bgv_pipeline.tools.client_rules import RuleVerdict
from bgv_pipeline.tools.risk import RiskScore
from bgv_pipeline.tools.settings import EngineSettings

LOGGER = logging.getLogger(__name__)

# Worst first; used for a Case's overallRiskLevel.
ZONE_SEVERITY_ORDER = (Zone.RED, Zone.YELLOW, Zone.PENDING, Zone.GREEN)


@dataclass(frozen=True)
class ZoneDecision:
    zone: Zone
    priority: Priority
    action: Action
    forced: bool = False
    escalations: List[Escalation] = field(default_factory=list)


def worst_zone(zones: Sequence[Zone]) -> Zone | None:
    present = set(zones)
    for zone in ZONE_SEVERITY_ORDER:
        if zone in present:
            return zone
    return None


def _score_priority(final: int, settings: EngineSettings) -> Priority:
    if final > settings.red_above:
        return Priority.HIGH if final > settings.high_priority_above else Priority.MEDIUM
    return Priority.MEDIUM if final > settings.yellow_above else Priority.LOW


def _action_for(zone: Zone, escalations: Sequence[Escalation]) -> Action:
    actions = {e.action for e in escalations}
    if zone is Zone.GREEN:
        return Action.AUTO_APPROVE
    if zone is Zone.YELLOW:
        return Action.RAISE_INSUFFICIENCY if Action.RAISE_INSUFFICIENCY in actions else Action.FOLLOW_UP
    if zone is Zone.RED:
        return Action.ESCALATE_CSE if Action.ESCALATE_CSE in actions else Action.SUPERVISOR_REVIEW
    if zone is Zone.PENDING:
        return Action.AWAIT_DATA
    assert_never(zone)


def classify(risk: RiskScore, discrepancies: Sequence[Discrepancy], verdict: RuleVerdict,
             settings: EngineSettings) -> ZoneDecision:
    final = risk.final
    has_high = any(d.severity is Severity.HIGH for d in discrepancies)

    if verdict.forced_red:
        zone, priority, forced = Zone.RED, Priority.HIGH, True
    elif final > settings.red_above:
        zone, priority, forced = Zone.RED, _score_priority(final, settings), False
    elif has_high or final > settings.yellow_above:
        zone, priority, forced = Zone.YELLOW, _score_priority(final, settings), False
    else:
        zone, priority, forced = Zone.GREEN, _score_priority(final, settings), False

    if zone is Zone.GREEN and (verdict.floor_yellow or verdict.indeterminate):
        LOGGER.info("Lifting GREEN to YELLOW (floor=%s, indeterminate=%s)", verdict.floor_yellow, verdict.indeterminate)
        zone = Zone.YELLOW

    escalations = list(verdict.escalations)
    if zone is Zone.RED:
        escalations.extend(verdict.red_escalations)

    return ZoneDecision(zone=zone, priority=priority, action=_action_for(zone, escalations),
                        forced=forced, escalations=escalations)


# ------------------------------ Summary --------------------------------------

def summarize(zone: Zone, action: Action, risk_score: int | None, discrepancy_count: int,
              reason: str | None = None) -> Summary:
    score_text = f"Risk Score: {risk_score}/100. " if risk_score is not None else ""
    if zone is Zone.GREEN:
        return Summary(
            status="APPROVED",
            message="Verification passed all checks. Data matches with acceptable tolerance.",
            details=f"{score_text}{discrepancy_count} minor discrepancies found.",
            action=action,
        )
    if zone is Zone.YELLOW:
        return Summary(
            status="APPROVED_WITH_NOTES",
            message="Verification passed with noted discrepancies. Follow-up is optional.",
            details=f"{score_text}{discrepancy_count} discrepancies found.",
            action=action,
        )
    if zone is Zone.RED:
        return Summary(
            status="NEEDS_REVIEW",
            message="Verification flagged for manual review due to discrepancies or rule violations.",
            details=f"{score_text}{discrepancy_count} discrepancies found.",
            action=action,
        )
    if zone is Zone.PENDING:
        return Summary(
            status="PENDING",
            message="Verification cannot be classified yet.",
            details=reason or "Claimed or verified data is not available.",
            action=action,
        )
    assert_never(zone)

# -*- coding: utf-8 -*-
"""
Check/Case store and the classification + review workflow around it.

Design
------
- In-memory store; every write to one check happens under that check's lock.
  Locks are created lazily under a registry lock, so writers only ever race
  within the same check id.
- Each accepted write bumps `revision`. Callers may pass `expected_revision`
  to get optimistic concurrency on top of the lock (StaleStateError on mismatch).
- Closed, RED-awaiting-review and FAILED checks are never reopened:
  re-classification needs `supersede=True` and produces a new check version.
- Case risk is recomputed under a per-case lock after every check write.
- `execute_case` fans classifications out on a thread pool and fans in to the
  Case's overallRiskLevel; one failing check never aborts its siblings.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Union

from bgv_pipeline.errors import (
    BgvError,
    CaseNotFoundError,
    CheckNotFoundError,
    InputError,
    StaleStateError,
)
from bgv_pipeline.models import (
    Action,
    AiAnalysis,
    Case,
    CaseExecution,
    Check,
    CheckOutcome,
    CheckState,
    ComparisonRequest,
    ComparisonResult,
    Discrepancy,
    ReviewOutcome,
    RuleEvaluation,
    Zone,
    utc_now_iso,
)
from bgv_pipeline.tools.activity import ActivityLogger
from bgv_pipeline.tools.comparison import check_gates, compare, pending_result
from bgv_pipeline.tools.review import CheckEvent, apply_review, classification_event, next_state
from bgv_pipeline.tools.settings import EngineSettings, load_settings
from bgv_pipeline.tools.zones import worst_zone

LOGGER = logging.getLogger(__name__)

AiFetcher = Callable[[ComparisonRequest, Sequence[Discrepancy]], Optional[AiAnalysis]]

# States a plain re-classification may not touch
_LOCKED_STATES = frozenset({
    CheckState.CLASSIFIED_RED,
    CheckState.CLOSED_GREEN,
    CheckState.CLOSED_YELLOW,
    CheckState.CLOSED_REJECTED,
    CheckState.FAILED,
})


def _max_workers_from_env() -> int:
    try:
        return max(1, int(os.getenv("BGV_MAX_WORKERS", "8")))
    except ValueError:
        LOGGER.warning("Invalid BGV_MAX_WORKERS; using 8")
        return 8


# ------------------------------ Store ----------------------------------------

class CheckStore:
    def __init__(self) -> None:
        self._checks: Dict[str, Check] = {}
        self._cases: Dict[str, Case] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._case_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._cases_lock = threading.Lock()

    def lock_for(self, check_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(check_id)
            if lock is None:
                lock = self._locks[check_id] = threading.Lock()
            return lock

    def case_lock(self, case_id: str) -> threading.Lock:
        with self._cases_lock:
            lock = self._case_locks.get(case_id)
            if lock is None:
                lock = self._case_locks[case_id] = threading.Lock()
            return lock

    def has_check(self, check_id: str) -> bool:
        with self._registry_lock:
            return check_id in self._checks

    def get_check(self, check_id: str) -> Check:
        with self._registry_lock:
            check = self._checks.get(check_id)
        if check is None:
            raise CheckNotFoundError(f"Check {check_id} not found", check_id=check_id)
        return check

    def add_check(self, check: Check) -> bool:
        """Insert unless the id is taken; False when it already exists."""
        with self._registry_lock:
            if check.check_id in self._checks:
                return False
            self._checks[check.check_id] = check
            return True

    def put_check(self, check: Check) -> None:
        with self._registry_lock:
            self._checks[check.check_id] = check

    def all_checks(self) -> List[Check]:
        with self._registry_lock:
            return list(self._checks.values())

    def get_case(self, case_id: str) -> Case:
        with self._cases_lock:
            case = self._cases.get(case_id)
        if case is None:
            raise CaseNotFoundError(f"Case {case_id} not found", case_id=case_id)
        return case

    def put_case(self, case: Case) -> None:
        with self._cases_lock:
            self._cases[case.case_id] = case

    def attach_check(self, case_id: str, check_id: str) -> None:
        with self._cases_lock:
            case = self._cases.get(case_id)
            if case is not None and check_id not in case.checks:
                self._cases[case_id] = case.model_copy(update={"checks": case.checks + [check_id]})

    def set_overall_risk(self, case_id: str, zone: Optional[Zone]) -> Optional[Case]:
        with self._cases_lock:
            case = self._cases.get(case_id)
            if case is None:
                return None
            case = case.model_copy(update={"overall_risk_level": zone})
            self._cases[case_id] = case
            return case


# ------------------------------ Service --------------------------------------

class CheckService:
    def __init__(
        self,
        store: Optional[CheckStore] = None,
        activity: Optional[ActivityLogger] = None,
        *,
        settings: Optional[EngineSettings] = None,
        ai_fetcher: Optional[AiFetcher] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.store = store or CheckStore()
        self.activity = activity or ActivityLogger()
        self._settings = settings
        self._ai_fetcher = ai_fetcher
        self._max_workers = max_workers or _max_workers_from_env()

    # ---- registration ----

    def register_case(self, case: Case) -> Case:
        self.store.put_case(case)
        return case

    def register_check(self, check: Check) -> Check:
        with self.store.lock_for(check.check_id):
            if not self.store.add_check(check):
                raise InputError(f"Check {check.check_id} already registered", check_id=check.check_id)
        if check.case_id:
            self.store.attach_check(check.case_id, check.check_id)
        return check

    def get_check(self, check_id: str) -> Check:
        return self.store.get_check(check_id)

    def get_case(self, case_id: str) -> Case:
        return self.store.get_case(case_id)

    # ---- classification ----

    def _settings_now(self) -> EngineSettings:
        return self._settings or load_settings()

    def _ensure_check(self, request: ComparisonRequest, case_id: Optional[str] = None) -> Check:
        if self.store.has_check(request.check_id):
            return self.store.get_check(request.check_id)
        company = (request.claimed_data or {}).get("companyName")
        check = Check(
            check_id=request.check_id,
            case_id=case_id,
            type=request.check_type,
            company_name=str(company) if company else None,
        )
        self.store.put_check(check)
        if case_id:
            self.store.attach_check(case_id, check.check_id)
        return check

    @staticmethod
    def _expect_revision(check: Check, expected_revision: Optional[int]) -> None:
        if expected_revision is not None and expected_revision != check.revision:
            raise StaleStateError(
                f"Check {check.check_id} is at revision {check.revision}, not {expected_revision}",
                check_id=check.check_id, revision=check.revision, expected=expected_revision,
            )

    @staticmethod
    def _new_version(check: Check) -> Check:
        LOGGER.info("Superseding check %s v%d (%s)", check.check_id, check.version, check.state.value)
        return check.model_copy(update={
            "state": CheckState.PENDING,
            "version": check.version + 1,
            "review_decision": None,
            "failure_reason": None,
        })

    def _compare_with_ai(self, request: ComparisonRequest, settings: EngineSettings,
                         reference: Optional[date]) -> ComparisonResult:
        preliminary = compare(request, settings=settings, reference_date=reference)
        if self._ai_fetcher is None or preliminary.zone is Zone.PENDING:
            return preliminary
        analysis = self._ai_fetcher(request, preliminary.discrepancies)
        if analysis is None:
            return preliminary
        return compare(request, analysis, settings=settings, reference_date=reference)

    def _run_classification(self, request: ComparisonRequest, settings: EngineSettings,
                            reference: Optional[date]) -> ComparisonResult:
        gate_ok, gate_results = check_gates(request, settings=settings, reference_date=reference)
        if not gate_ok:
            LOGGER.info("Check %s held: follow-up gate not satisfied", request.check_id)
            return pending_result(
                request,
                action=Action.AWAIT_FOLLOWUPS,
                reason="Minimum follow-ups / HR attempts not reached.",
                rule_evaluation=RuleEvaluation(
                    rules_applied=gate_results,
                    client_sku=request.client_policy.sku_name,
                    degraded=True,
                    gate_satisfied=False,
                ),
            )
        return self._compare_with_ai(request, settings, reference)

    def _fail(self, check: Check, exc: InputError, actor: str) -> None:
        failed = check.model_copy(update={
            "state": next_state(check.state, CheckEvent.FAIL, check.check_id),
            "failure_reason": exc.message,
            "revision": check.revision + 1,
            "modified_at": utc_now_iso(),
        })
        self.store.put_check(failed)
        self.activity.log("check", check.check_id, "FAILED", exc.message,
                          check_id=check.check_id, actor=actor, metadata=exc.to_dict())
        LOGGER.warning("Check %s failed: %s", check.check_id, exc.message)

    def classify(
        self,
        request: ComparisonRequest,
        *,
        actor: str = "system",
        expected_revision: Optional[int] = None,
        supersede: bool = False,
        reference_date: Optional[date] = None,
        case_id: Optional[str] = None,
    ) -> ComparisonResult:
        settings = self._settings_now()
        with self.store.lock_for(request.check_id):
            check = self._ensure_check(request, case_id)
            self._expect_revision(check, expected_revision)
            if check.state in _LOCKED_STATES:
                if not supersede:
                    next_state(check.state, CheckEvent.INPUTS_READY, check.check_id)  # raises
                check = self._new_version(check)

            try:
                result = self._run_classification(request, settings, reference_date)
            except InputError as exc:
                self._fail(check, exc, actor)
                raise

            state = check.state
            if result.zone is Zone.PENDING:
                if state is CheckState.IN_PROGRESS:
                    state = next_state(state, CheckEvent.CLASSIFIED_PENDING, check.check_id)
            else:
                if state is CheckState.PENDING:
                    state = next_state(state, CheckEvent.INPUTS_READY, check.check_id)
                state = next_state(state, classification_event(result.zone), check.check_id)

            history = check.history + ([check.comparison_result] if check.comparison_result else [])
            updated = check.model_copy(update={
                "state": state,
                "zone": result.zone,
                "risk_score": result.risk_score,
                "priority": result.priority,
                "discrepancies": result.discrepancies,
                "comparison_result": result,
                "history": history,
                "revision": check.revision + 1,
                "modified_at": utc_now_iso(),
            })
            self.store.put_check(updated)

        self.activity.log_classification(result, actor, case_id=updated.case_id, version=updated.version)
        if updated.case_id:
            self.refresh_case(updated.case_id)
        return result

    # ---- review ----

    def review(
        self,
        check_id: str,
        decision: Union[ReviewOutcome, str],
        notes: str = "",
        reviewed_by: str = "Supervisor",
        *,
        expected_revision: Optional[int] = None,
    ) -> Check:
        try:
            outcome = ReviewOutcome(str(getattr(decision, "value", decision)).strip().upper())
        except ValueError as exc:
            raise InputError(f"Invalid decision {decision!r}; must be APPROVED or REJECTED",
                             check_id=check_id) from exc

        with self.store.lock_for(check_id):
            check = self.store.get_check(check_id)
            self._expect_revision(check, expected_revision)
            reviewed = apply_review(check, outcome, notes, reviewed_by)
            reviewed = reviewed.model_copy(update={
                "revision": check.revision + 1,
                "modified_at": utc_now_iso(),
            })
            self.store.put_check(reviewed)

        self.activity.log_review(reviewed.review_decision, reviewed.risk_score)
        if reviewed.case_id:
            self.refresh_case(reviewed.case_id)
        return reviewed

    # ---- case fan-out / fan-in ----

    def refresh_case(self, case_id: str) -> Optional[Case]:
        """Recompute overallRiskLevel; read and write happen under the case lock."""
        with self.store.case_lock(case_id):
            try:
                case = self.store.get_case(case_id)
            except CaseNotFoundError:
                return None
            zones: List[Zone] = []
            for check_id in case.checks:
                try:
                    check = self.store.get_check(check_id)
                except CheckNotFoundError:
                    continue
                if check.comparison_result is not None:
                    zones.append(check.zone)
            return self.store.set_overall_risk(case_id, worst_zone(zones))

    def _execute_one(self, case_id: str, request: ComparisonRequest, actor: str) -> CheckOutcome:
        try:
            result = self.classify(request, actor=actor, case_id=case_id)
        except BgvError as exc:
            return CheckOutcome(check_id=request.check_id, success=False, error=exc.message)
        except Exception as exc:  # sibling checks must keep running
            LOGGER.exception("Unexpected error classifying %s", request.check_id)
            return CheckOutcome(check_id=request.check_id, success=False, error=str(exc))
        return CheckOutcome(check_id=request.check_id, success=True, zone=result.zone, risk_score=result.risk_score)

    def execute_case(self, case_id: str, requests: Sequence[ComparisonRequest], *,
                     actor: str = "system") -> CaseExecution:
        self.store.get_case(case_id)
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="bgv-check") as pool:
            futures = [pool.submit(self._execute_one, case_id, req, actor) for req in requests]
            results = [f.result() for f in futures]

        case = self.refresh_case(case_id)
        LOGGER.info("Case %s executed: %d checks, overall %s", case_id, len(results),
                    case.overall_risk_level.value if case and case.overall_risk_level else None)
        self.activity.log("case", case_id, "CASE_EXECUTED", f"Executed {len(results)} checks",
                          zone=case.overall_risk_level if case else None, actor=actor,
                          metadata={"failed": [r.check_id for r in results if not r.success]})
        return CaseExecution(
            case_id=case_id,
            checks_executed=len(results),
            results=results,
            overall_risk_level=case.overall_risk_level if case else None,
        )

    # ---- dashboards ----

    def checks_in_zone(self, zone: Zone) -> List[Check]:
        checks = [c for c in self.store.all_checks() if c.zone is zone]
        if zone is Zone.RED:
            checks.sort(key=lambda c: c.risk_score or 0, reverse=True)
        return checks

    def zone_stats(self) -> Dict[str, Union[int, float]]:
        settings = self._settings_now()
        checks = self.store.all_checks()
        scored = [c.risk_score for c in checks if c.risk_score is not None]
        return {
            "total": len(checks),
            "greenZone": sum(1 for c in checks if c.zone is Zone.GREEN),
            "yellowZone": sum(1 for c in checks if c.zone is Zone.YELLOW),
            "redZone": sum(1 for c in checks if c.zone is Zone.RED),
            "pending": sum(1 for c in checks if c.zone is Zone.PENDING),
            "needsReview": sum(1 for c in checks if c.state is CheckState.CLASSIFIED_RED),
            "failed": sum(1 for c in checks if c.state is CheckState.FAILED),
            "averageRiskScore": round(sum(scored) / len(scored), 1) if scored else 0.0,
            "highRisk": sum(1 for s in scored if s > settings.red_above),
            "mediumRisk": sum(1 for s in scored if settings.yellow_above < s <= settings.red_above),
            "lowRisk": sum(1 for s in scored if s <= settings.yellow_above),
        }

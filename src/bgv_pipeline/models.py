from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bgv_pipeline.errors import UnknownInstructionError

Scalar = Union[str, int, float, bool, None]
FieldMap = Dict[str, Scalar]


def utc_now_iso() -> str:
    """ISO 8601 timestamp with timezone, second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ------------------------------ Enums ----------------------------------------

class Zone(str, Enum):
    PENDING = "PENDING"
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CheckType(str, Enum):
    EDUCATION = "EDUCATION"
    CRIME = "CRIME"
    EMPLOYMENT = "EMPLOYMENT"


class CheckStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CheckState(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    CLASSIFIED_RED = "CLASSIFIED_RED"
    CLOSED_GREEN = "CLOSED_GREEN"
    CLOSED_YELLOW = "CLOSED_YELLOW"
    CLOSED_REJECTED = "CLOSED_REJECTED"
    FAILED = "FAILED"


class SkuTier(str, Enum):
    BASIC = "BASIC"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"


class ReviewOutcome(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Action(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    FOLLOW_UP = "FOLLOW_UP"
    SUPERVISOR_REVIEW = "SUPERVISOR_REVIEW"
    ESCALATE_CSE = "ESCALATE_CSE"
    RAISE_INSUFFICIENCY = "RAISE_INSUFFICIENCY"
    AWAIT_DATA = "AWAIT_DATA"
    AWAIT_FOLLOWUPS = "AWAIT_FOLLOWUPS"
    HOLD = "HOLD"


class Instruction(str, Enum):
    """Closed set of client special instructions."""

    UAN_30DAY_TOLERANCE = "uan_30day_tolerance"
    UAN_DOL_PF_CHECK = "uan_dol_pf_check"
    NO_OVERSEAS_CHECKS = "no_overseas_checks"
    GOVT_ORG_ESCALATE = "govt_org_escalate"
    COMPANY_NOT_FOUND_ESCALATE = "company_not_found_escalate"
    REQUIRE_EXPERIENCE_LETTER = "require_experience_letter"
    RED_CHECKS_ESCALATE = "red_checks_escalate"
    MANDATORY_5_FOLLOWUPS = "mandatory_5_followups"
    HR_ATTEMPTS_REQUIRED = "hr_attempts_required"
    NO_VERBAL_CLOSURES = "no_verbal_closures"
    INSUFFICIENCY_NO_EXP_LETTER = "insufficiency_no_exp_letter"
    UTV_BEFORE_DUE = "utv_before_due"


def parse_instructions(instruction_ids: Iterable[Any]) -> List[Instruction]:
    """Resolve ids case-insensitively, order kept. Unknown ids raise UnknownInstructionError."""
    resolved: List[Instruction] = []
    unknown: List[str] = []
    for raw in instruction_ids:
        try:
            resolved.append(Instruction(str(raw).strip().lower()))
        except ValueError:
            unknown.append(str(raw))
    if unknown:
        raise UnknownInstructionError(f"Unknown special instruction(s): {', '.join(unknown)}", instructions=unknown)
    return resolved


def _known_instructions(value: List[str]) -> List[str]:
    return [i.value for i in parse_instructions(value)]


InstructionIds = Annotated[List[str], AfterValidator(_known_instructions)]


# ------------------------------ Base -----------------------------------------

class _Wire(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class _Snapshot(_Wire):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ------------------------------ Inputs ---------------------------------------

class ClientPolicy(_Snapshot):
    """Frozen client configuration captured for one classification pass."""

    client_id: Optional[str] = None
    company_name: Optional[str] = None
    sku_name: SkuTier = SkuTier.STANDARD
    primary_verification_method: Optional[str] = None
    fallback_method: Optional[str] = None
    special_instructions: InstructionIds = Field(default_factory=list)


class VerificationContext(_Snapshot):
    """Lookup facts gathered outside the two field maps."""

    tenure_source: Optional[str] = None          # UAN | HR | DOCUMENT
    dol_available: Optional[bool] = None
    pf_deduction_months: Optional[int] = None
    jurisdiction: Optional[str] = None           # ISO country code of verified employer
    government_org: Optional[bool] = None
    company_not_found: Optional[bool] = None
    experience_letter_uploaded: Optional[bool] = None
    followup_count: Optional[int] = None
    hr_attempts: Optional[int] = None
    verification_method: Optional[str] = None    # written | verbal
    due_date: Optional[str] = None


class ComparisonRequest(_Snapshot):
    check_id: str
    check_type: CheckType = CheckType.EMPLOYMENT
    claimed_data: Optional[FieldMap] = None
    verified_data: Optional[FieldMap] = None
    client_policy: ClientPolicy = Field(default_factory=ClientPolicy)
    context: VerificationContext = Field(default_factory=VerificationContext)


class AiAnalysis(_Snapshot):
    risk_level: str                              # LOW | MEDIUM | HIGH (or *_RISK)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    recommendations: List[str] = Field(default_factory=list)


# ------------------------------ Results --------------------------------------

class Discrepancy(_Snapshot):
    field: str
    label: str
    employee_value: Scalar = None
    hr_value: Scalar = None
    severity: Severity
    difference: Optional[str] = None
    reason: str = "mismatch"                     # mismatch | missing | unparsed


class Match(_Snapshot):
    field: str
    label: str
    confidence: str = "high"                     # high | low


class RuleResult(_Snapshot):
    name: str
    description: str
    expected: str
    actual: str
    passed: Optional[bool]                       # None == indeterminate


class Escalation(_Snapshot):
    rule: str
    action: Action
    sla: Optional[str] = None


class RuleEvaluation(_Snapshot):
    rules_applied: List[RuleResult] = Field(default_factory=list)
    client_sku: SkuTier = Field(default=SkuTier.STANDARD, alias="clientSKU")
    degraded: bool = False
    indeterminate: List[str] = Field(default_factory=list)
    forced_red: bool = False
    escalations: List[Escalation] = Field(default_factory=list)
    gate_satisfied: bool = True
    blocked: bool = False


class Summary(_Snapshot):
    message: str
    status: str
    details: str
    action: Action


class ComparisonResult(_Snapshot):
    check_id: str
    zone: Zone
    risk_score: Optional[int] = Field(default=None, ge=0, le=100)
    base_score: Optional[int] = Field(default=None, ge=0, le=100)
    priority: Optional[Priority] = None
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    matches: List[Match] = Field(default_factory=list)
    match_rate: float = 100.0
    rule_evaluation: RuleEvaluation = Field(default_factory=RuleEvaluation)
    ai_analysis: Optional[AiAnalysis] = None
    summary: Summary
    compared_at: str = Field(default_factory=utc_now_iso)


class ReviewDecision(_Snapshot):
    check_id: str
    decision: ReviewOutcome
    notes: str = ""
    reviewed_by: str = "Supervisor"
    reviewed_at: str = Field(default_factory=utc_now_iso)
    previous_zone: Optional[Zone] = None
    new_zone: Optional[Zone] = None


class ActivityEvent(_Snapshot):
    log_id: str
    entity_type: str                             # check | case
    entity_id: str
    action: str                                  # CLASSIFIED | REVIEWED | FAILED | ...
    description: str = ""
    check_id: Optional[str] = None
    zone: Optional[Zone] = None
    risk_score: Optional[int] = None
    actor: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)


# ------------------------------ Records --------------------------------------

class Client(_Wire):
    client_id: str
    company_name: str
    sku_name: SkuTier = SkuTier.STANDARD
    primary_verification_method: str = "hr_rm_verification"
    fallback_method: str = "uan_verification"
    special_instructions: InstructionIds = Field(default_factory=list)

    def policy(self) -> ClientPolicy:
        return ClientPolicy(
            client_id=self.client_id,
            company_name=self.company_name,
            sku_name=self.sku_name,
            primary_verification_method=self.primary_verification_method,
            fallback_method=self.fallback_method,
            special_instructions=list(self.special_instructions),
        )


class Check(_Wire):
    check_id: str
    case_id: Optional[str] = None
    type: CheckType = CheckType.EMPLOYMENT
    company_name: Optional[str] = None
    state: CheckState = CheckState.PENDING
    risk_score: Optional[int] = None
    zone: Zone = Zone.PENDING
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    comparison_result: Optional[ComparisonResult] = None
    history: List[ComparisonResult] = Field(default_factory=list)
    review_decision: Optional[ReviewDecision] = None
    priority: Optional[Priority] = None
    version: int = 1
    revision: int = 0
    failure_reason: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    modified_at: Optional[str] = None

    @property
    def status(self) -> CheckStatus:
        return status_for_state(self.state)

    def to_wire(self) -> Dict[str, Any]:
        out = super().to_wire()
        out["status"] = self.status.value
        return out


class Case(_Wire):
    case_id: str
    client_id: Optional[str] = None
    employee_name: str
    position_applied: Optional[str] = None
    checks: List[str] = Field(default_factory=list)
    overall_risk_level: Optional[Zone] = None
    archived: bool = False


class CheckOutcome(_Wire):
    check_id: str
    success: bool
    zone: Optional[Zone] = None
    risk_score: Optional[int] = None
    error: Optional[str] = None


class CaseExecution(_Wire):
    case_id: str
    checks_executed: int
    results: List[CheckOutcome] = Field(default_factory=list)
    overall_risk_level: Optional[Zone] = None


def status_for_state(state: CheckState) -> CheckStatus:
    if state is CheckState.PENDING:
        return CheckStatus.PENDING
    if state in (CheckState.IN_PROGRESS, CheckState.CLASSIFIED_RED):
        return CheckStatus.IN_PROGRESS
    if state in (CheckState.CLOSED_GREEN, CheckState.CLOSED_YELLOW, CheckState.CLOSED_REJECTED):
        return CheckStatus.COMPLETED
    if state is CheckState.FAILED:
        return CheckStatus.FAILED
    raise ValueError(f"Unhandled check state: {state}")

import os
import threading
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import BgvError, CaseNotFoundError, CheckNotFoundError, InputError, InvalidStateError
from .models import Case, ComparisonRequest, Zone
from .tools.ai_signal import fetch_ai_analysis
from .tools.checks import CheckService

# Load environment variables
load_dotenv()

app = FastAPI(title="Background Verification API")


class ReviewInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    decision: str
    notes: str = ""
    reviewed_by: str = "Supervisor"
    expected_revision: Optional[int] = None


class CaseExecutionInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    requests: List[ComparisonRequest] = Field(default_factory=list)
    actor: str = "system"


def _ai_enabled() -> bool:
    return os.getenv("BGV_AI_ENABLED", "false").strip().lower() in ("1", "true", "yes")


_service: Optional[CheckService] = None
_service_lock = threading.Lock()


def get_service() -> CheckService:
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = CheckService(ai_fetcher=fetch_ai_analysis if _ai_enabled() else None)
    return _service


def _http_error(exc: BgvError) -> HTTPException:
    if isinstance(exc, (CheckNotFoundError, CaseNotFoundError)):
        status = 404
    elif isinstance(exc, InvalidStateError):
        status = 409
    elif isinstance(exc, InputError):
        status = 400
    else:
        status = 500
    return HTTPException(status_code=status, detail=exc.to_dict())


def _parse_zone(zone: str) -> Zone:
    try:
        return Zone(zone.strip().upper())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid zone. Must be green, yellow, red or pending")


@app.get("/ping")
def ping():
    return {"pong": True}


@app.post("/classify")
def classify(payload: ComparisonRequest, actor: str = "api", service: CheckService = Depends(get_service)):
    try:
        result = service.classify(payload, actor=actor)
    except BgvError as exc:
        raise _http_error(exc)
    return {"success": True, "comparisonResult": result.to_wire()}


@app.post("/zones/review/{check_id}")
def review_check(check_id: str, payload: ReviewInput, service: CheckService = Depends(get_service)):
    """
    Supervisor decision for a RED check.
        - 400: decision is not APPROVED / REJECTED
        - 404: unknown check
        - 409: check is not awaiting review, or was already reviewed
    """
    try:
        check = service.review(
            check_id,
            payload.decision,
            payload.notes,
            payload.reviewed_by,
            expected_revision=payload.expected_revision,
        )
    except BgvError as exc:
        raise _http_error(exc)
    return {"success": True, "check": check.to_wire()}


@app.get("/zones/stats")
def zone_stats(service: CheckService = Depends(get_service)):
    return {"success": True, "stats": service.zone_stats()}


@app.get("/zones/comparison/{check_id}")
def comparison_details(check_id: str, service: CheckService = Depends(get_service)):
    try:
        check = service.get_check(check_id)
    except BgvError as exc:
        raise _http_error(exc)
    if check.comparison_result is None:
        raise HTTPException(status_code=404, detail=f"No comparison result for check {check_id}")
    return {
        "success": True,
        "checkId": check.check_id,
        "status": check.status.value,
        "comparisonResult": check.comparison_result.to_wire(),
        "reviewDecision": check.review_decision.to_wire() if check.review_decision else None,
        "history": [r.to_wire() for r in check.history],
    }


@app.get("/zones/{zone}")
def checks_in_zone(zone: str, service: CheckService = Depends(get_service)):
    checks = service.checks_in_zone(_parse_zone(zone))
    return {"success": True, "count": len(checks), "checks": [c.to_wire() for c in checks]}


@app.get("/checks/{check_id}")
def get_check(check_id: str, service: CheckService = Depends(get_service)):
    try:
        return service.get_check(check_id).to_wire()
    except BgvError as exc:
        raise _http_error(exc)


@app.post("/cases")
def register_case(payload: Case, service: CheckService = Depends(get_service)):
    return service.register_case(payload).to_wire()


@app.get("/cases/{case_id}")
def get_case(case_id: str, service: CheckService = Depends(get_service)):
    try:
        return service.get_case(case_id).to_wire()
    except BgvError as exc:
        raise _http_error(exc)


@app.post("/cases/{case_id}/execute")
def execute_case(case_id: str, payload: CaseExecutionInput, service: CheckService = Depends(get_service)):
    try:
        execution = service.execute_case(case_id, payload.requests, actor=payload.actor)
    except BgvError as exc:
        raise _http_error(exc)
    return execution.to_wire()


@app.get("/activity-logs/{entity_type}/{entity_id}")
def activity_logs(entity_type: str, entity_id: str, service: CheckService = Depends(get_service)):
    events = service.activity.list_activity(entity_type, entity_id)
    return {"success": True, "count": len(events), "logs": [e.to_wire() for e in events]}

# -*- coding: utf-8 -*-
"""
Check lifecycle as an explicit finite-state machine.

    PENDING      --INPUTS_READY-------> IN_PROGRESS
    IN_PROGRESS  --CLASSIFIED_PENDING-> PENDING
    IN_PROGRESS  --CLASSIFIED_GREEN---> CLOSED_GREEN
    IN_PROGRESS  --CLASSIFIED_YELLOW--> CLOSED_YELLOW
    IN_PROGRESS  --CLASSIFIED_RED-----> CLASSIFIED_RED
    CLASSIFIED_RED --REVIEW_APPROVED--> CLOSED_GREEN
    CLASSIFIED_RED --REVIEW_REJECTED--> CLOSED_REJECTED
    PENDING | IN_PROGRESS --FAIL------> FAILED

CLOSED_* and FAILED are terminal. Anything not in the table is rejected; from a
CLOSED_* state the rejection is a StaleStateError (someone already closed it).
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, assert_never

from bgv_pipeline.errors import InvalidStateError, StaleStateError
from bgv_pipeline.models import Check, CheckState, ReviewDecision, ReviewOutcome, Zone


class CheckEvent(str, Enum):
    INPUTS_READY = "INPUTS_READY"
    CLASSIFIED_PENDING = "CLASSIFIED_PENDING"
    CLASSIFIED_GREEN = "CLASSIFIED_GREEN"
    CLASSIFIED_YELLOW = "CLASSIFIED_YELLOW"
    CLASSIFIED_RED = "CLASSIFIED_RED"
    REVIEW_APPROVED = "REVIEW_APPROVED"
    REVIEW_REJECTED = "REVIEW_REJECTED"
    FAIL = "FAIL"


TRANSITIONS: Mapping[Tuple[CheckState, CheckEvent], CheckState] = MappingProxyType({
    (CheckState.PENDING, CheckEvent.INPUTS_READY): CheckState.IN_PROGRESS,
    (CheckState.PENDING, CheckEvent.FAIL): CheckState.FAILED,
    (CheckState.IN_PROGRESS, CheckEvent.CLASSIFIED_PENDING): CheckState.PENDING,
    (CheckState.IN_PROGRESS, CheckEvent.CLASSIFIED_GREEN): CheckState.CLOSED_GREEN,
    (CheckState.IN_PROGRESS, CheckEvent.CLASSIFIED_YELLOW): CheckState.CLOSED_YELLOW,
    (CheckState.IN_PROGRESS, CheckEvent.CLASSIFIED_RED): CheckState.CLASSIFIED_RED,
    (CheckState.IN_PROGRESS, CheckEvent.FAIL): CheckState.FAILED,
    (CheckState.CLASSIFIED_RED, CheckEvent.REVIEW_APPROVED): CheckState.CLOSED_GREEN,
    (CheckState.CLASSIFIED_RED, CheckEvent.REVIEW_REJECTED): CheckState.CLOSED_REJECTED,
})

CLOSED_STATES = frozenset({CheckState.CLOSED_GREEN, CheckState.CLOSED_YELLOW, CheckState.CLOSED_REJECTED})
TERMINAL_STATES = CLOSED_STATES | {CheckState.FAILED}


def next_state(state: CheckState, event: CheckEvent, check_id: Optional[str] = None) -> CheckState:
    target = TRANSITIONS.get((state, event))
    if target is not None:
        return target
    if state in CLOSED_STATES:
        raise StaleStateError(f"Check is already {state.value}; {event.value} rejected",
                              check_id=check_id, state=state.value, event=event.value)
    raise InvalidStateError(f"{event.value} not allowed from {state.value}",
                            check_id=check_id, state=state.value, event=event.value)


def classification_event(zone: Zone) -> CheckEvent:
    if zone is Zone.PENDING:
        return CheckEvent.CLASSIFIED_PENDING
    if zone is Zone.GREEN:
        return CheckEvent.CLASSIFIED_GREEN
    if zone is Zone.YELLOW:
        return CheckEvent.CLASSIFIED_YELLOW
    if zone is Zone.RED:
        return CheckEvent.CLASSIFIED_RED
    assert_never(zone)


def review_event(decision: ReviewOutcome) -> CheckEvent:
    if decision is ReviewOutcome.APPROVED:
        return CheckEvent.REVIEW_APPROVED
    if decision is ReviewOutcome.REJECTED:
        return CheckEvent.REVIEW_REJECTED
    assert_never(decision)


def apply_review(check: Check, decision: ReviewOutcome, notes: str = "", reviewed_by: str = "Supervisor") -> Check:
    """
    Return a new Check carrying the ReviewDecision. The ComparisonResult stays
    as computed; only the check-level zone follows the human decision.
    """
    if check.review_decision is not None:
        raise StaleStateError(
            f"Check already reviewed ({check.review_decision.decision.value}); decision retained",
            check_id=check.check_id, state=check.state.value,
        )
    if check.state is not CheckState.CLASSIFIED_RED:
        raise InvalidStateError(f"Only RED checks can be reviewed (state {check.state.value})",
                                check_id=check.check_id, state=check.state.value)
    state = next_state(check.state, review_event(decision), check.check_id)
    new_zone = Zone.GREEN if decision is ReviewOutcome.APPROVED else Zone.RED
    record = ReviewDecision(
        check_id=check.check_id,
        decision=decision,
        notes=notes,
        reviewed_by=reviewed_by or "Supervisor",
        previous_zone=check.zone,
        new_zone=new_zone,
    )
    return check.model_copy(update={
        "state": state,
        "zone": new_zone,
        "review_decision": record,
    })

# -*- coding: utf-8 -*-
"""
Optional AI analysis of a discrepancy set, fetched with a bounded timeout.

- No discrepancies: a LOW / 1.0 signal is returned without calling the model.
- Otherwise the analysis crew runs on a worker thread; the caller waits at most
  BGV_AI_TIMEOUT_SECONDS (default 10).
- Timeout, crew error or an unusable answer -> None, and scoring runs degraded.
"""

from __future__ import annotations

import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Optional, Sequence

from pydantic import ValidationError

from bgv_pipeline.crew import AnalysisCrew
from bgv_pipeline.models import AiAnalysis, ComparisonRequest, Discrepancy

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Process-wide pool; a timed-out call keeps running there and its result is dropped.
_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ai-signal")

Runner = Callable[[Dict[str, Any]], Any]


def _timeout_from_env() -> float:
    raw = os.getenv("BGV_AI_TIMEOUT_SECONDS")
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        return max(0.1, float(raw))
    except ValueError:
        LOGGER.warning("Invalid BGV_AI_TIMEOUT_SECONDS=%r; using %s", raw, DEFAULT_TIMEOUT_SECONDS)
        return DEFAULT_TIMEOUT_SECONDS


def build_inputs(request: ComparisonRequest, discrepancies: Sequence[Discrepancy]) -> Dict[str, Any]:
    return {
        "check_id": request.check_id,
        "check_type": request.check_type.value,
        "client_sku": request.client_policy.sku_name.value,
        "special_instructions": ", ".join(request.client_policy.special_instructions) or "none",
        "discrepancies": json.dumps([d.to_wire() for d in discrepancies], ensure_ascii=False),
    }


def run_analysis_crew(inputs: Dict[str, Any]) -> Any:
    return AnalysisCrew().crew().kickoff(inputs=inputs)


def _coerce(output: Any) -> AiAnalysis:
    """Accept an AiAnalysis, a CrewOutput (pydantic / json_dict / raw), a dict or a JSON string."""
    if isinstance(output, AiAnalysis):
        return output
    pyd = getattr(output, "pydantic", None)
    if isinstance(pyd, AiAnalysis):
        return pyd
    as_dict = getattr(output, "json_dict", None)
    if isinstance(as_dict, dict):
        return AiAnalysis.model_validate(as_dict)
    if isinstance(output, dict):
        return AiAnalysis.model_validate(output)
    raw = getattr(output, "raw", output)
    return AiAnalysis.model_validate_json(str(raw))


def fetch_ai_analysis(
    request: ComparisonRequest,
    discrepancies: Sequence[Discrepancy],
    *,
    runner: Optional[Runner] = None,
    timeout: Optional[float] = None,
) -> Optional[AiAnalysis]:
    if not discrepancies:
        return AiAnalysis(risk_level="LOW", confidence=1.0, reasoning="No discrepancies found", recommendations=[])

    runner = runner or run_analysis_crew
    timeout = timeout if timeout is not None else _timeout_from_env()
    future = _EXECUTOR.submit(runner, build_inputs(request, discrepancies))
    try:
        output = future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        LOGGER.warning("AI analysis for %s timed out after %.1fs; scoring degraded", request.check_id, timeout)
        return None
    except Exception as exc:  # collaborator failure is never fatal
        LOGGER.warning("AI analysis for %s failed: %s; scoring degraded", request.check_id, exc)
        return None

    try:
        return _coerce(output)
    except (ValidationError, ValueError) as exc:
        LOGGER.warning("AI analysis for %s returned an unusable answer: %s", request.check_id, exc)
        return None

# test/test_ai_signal.py
import json
import threading
from types import SimpleNamespace

import pytest

from bgv_pipeline.models import AiAnalysis, Discrepancy, Severity
from bgv_pipeline.tools import ai_signal

DISCREPANCIES = [Discrepancy(field="salary", label="Salary/CTC", employee_value="50000",
                             hr_value="20000", severity=Severity.HIGH, difference="60.0% (30,000 INR)")]
ANSWER = {"risk_level": "HIGH", "confidence": 0.7, "reasoning": "large CTC gap", "recommendations": ["call HR"]}


def _fetch(make_request, runner, **kw):
    return ai_signal.fetch_ai_analysis(make_request(), DISCREPANCIES, runner=runner, **kw)


def test_no_discrepancies_skips_the_model(make_request):
    def runner(inputs):
        raise AssertionError("model must not be called")

    analysis = ai_signal.fetch_ai_analysis(make_request(), [], runner=runner)
    assert (analysis.risk_level, analysis.confidence) == ("LOW", 1.0)


@pytest.mark.parametrize("output", [
    ANSWER,
    json.dumps(ANSWER),
    AiAnalysis(**ANSWER),
    SimpleNamespace(pydantic=AiAnalysis(**ANSWER), json_dict=None, raw=""),
    SimpleNamespace(pydantic=None, json_dict=ANSWER, raw=""),
    SimpleNamespace(pydantic=None, json_dict=None, raw=json.dumps(ANSWER)),
])
def test_crew_output_shapes_are_coerced(make_request, output):
    analysis = _fetch(make_request, lambda inputs: output)
    assert analysis.risk_level == "HIGH"
    assert analysis.confidence == pytest.approx(0.7)


def test_runner_receives_task_inputs(make_request):
    seen = {}

    def runner(inputs):
        seen.update(inputs)
        return ANSWER

    _fetch(make_request, runner)
    assert seen["check_id"] == "CHK-1"
    assert seen["check_type"] == "EMPLOYMENT"
    assert seen["client_sku"] == "STANDARD"
    assert seen["special_instructions"] == "none"
    assert json.loads(seen["discrepancies"])[0]["hrValue"] == "20000"


def test_runner_error_degrades(make_request, caplog):
    def runner(inputs):
        raise RuntimeError("LLM unavailable")

    with caplog.at_level("WARNING"):
        assert _fetch(make_request, runner) is None
    assert "LLM unavailable" in caplog.text


def test_timeout_degrades(make_request, caplog):
    release = threading.Event()

    def runner(inputs):
        release.wait(5)
        return ANSWER

    try:
        with caplog.at_level("WARNING"):
            assert _fetch(make_request, runner, timeout=0.05) is None
    finally:
        release.set()
    assert "timed out" in caplog.text


def test_unusable_answer_degrades(make_request):
    assert _fetch(make_request, lambda inputs: "I think it is probably fine") is None
    assert _fetch(make_request, lambda inputs: {"risk_level": "HIGH", "confidence": 4}) is None


def test_timeout_from_env(monkeypatch):
    monkeypatch.setenv("BGV_AI_TIMEOUT_SECONDS", "2.5")
    assert ai_signal._timeout_from_env() == 2.5
    monkeypatch.setenv("BGV_AI_TIMEOUT_SECONDS", "soon")
    assert ai_signal._timeout_from_env() == ai_signal.DEFAULT_TIMEOUT_SECONDS

# test/test_analysis_crew.py
from unittest.mock import MagicMock, patch

import pytest

import bgv_pipeline.crew as crew_mod
import bgv_pipeline.router.router as router_mod
from bgv_pipeline.crew import AnalysisCrew
from bgv_pipeline.models import AiAnalysis


@patch.object(crew_mod, "llmrouter")
def test_analysis_crew_wiring(mock_llmrouter):
    # llmrouter must return an object with a string .model (keeps pydantic happy)
    mock_llm = MagicMock()
    mock_llm.model = "openai/gpt-4o-mini"
    mock_llmrouter.return_value = mock_llm

    crew = AnalysisCrew()
    task = crew.analysis_task()

    assert task.output_pydantic is AiAnalysis
    assert [t.name for t in task.agent.tools] == ["fetch_client_rules"]
    assert task.agent.allow_delegation is False
    assert "{discrepancies}" in task.description


def test_llmrouter_uses_configured_model(monkeypatch):
    monkeypatch.setenv("BGV_ANALYSIS_MODEL", "gpt-4.1-mini")
    with patch.object(router_mod, "_ping_openai", return_value=True), \
         patch.object(router_mod, "LLM") as mock_llm:
        router_mod.llmrouter()
    mock_llm.assert_called_once_with(model="gpt-4.1-mini", temperature=0.05)


def test_llmrouter_falls_back_when_ping_fails(monkeypatch):
    monkeypatch.delenv("BGV_ANALYSIS_MODEL", raising=False)
    with patch.object(router_mod, "_ping_openai", side_effect=RuntimeError("quota")), \
         patch.object(router_mod, "LLM") as mock_llm:
        router_mod.llmrouter()
    mock_llm.assert_called_once_with(model=router_mod.FALLBACK_MODEL, temperature=0.05)


def test_ping_wraps_client_errors():
    with patch.object(router_mod, "OpenAI", side_effect=Exception("no api key")):
        with pytest.raises(RuntimeError, match="no api key"):
            router_mod._ping_openai("gpt-5-nano")

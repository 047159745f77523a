import logging
import os

from crewai import LLM
from openai import OpenAI

LOGGER = logging.getLogger(__name__)

FALLBACK_MODEL = "gpt-4o-mini"


def _ping_openai(model: str) -> bool:
    """Ping OpenAI model with minimal request."""
    try:
        client = OpenAI()
        resp = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=1,
            temperature=0,
        )
        return bool(resp and resp.choices)
    except Exception as e:
        raise RuntimeError(f"OpenAI Ping test failed: {e}")


def llmrouter(model_name: str | None = None, temperature: float = 0.05) -> LLM:
    """
    Pick the LLM for the discrepancy analyst.
        - Model comes from the argument, else BGV_ANALYSIS_MODEL, else gpt-5-nano
        - If the ping fails, fall back to gpt-4o-mini
    """
    model_name = model_name or os.getenv("BGV_ANALYSIS_MODEL", "gpt-5-nano")
    try:
        _ping_openai(model_name)
        return LLM(model=model_name, temperature=temperature)
    except RuntimeError as exc:
        LOGGER.warning("Model %s unavailable (%s); falling back to %s", model_name, exc, FALLBACK_MODEL)
        return LLM(model=FALLBACK_MODEL, temperature=temperature)

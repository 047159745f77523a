# -*- coding: utf-8 -*-
"""
Risk scorer: discrepancies (+ optional AI signal) -> 0..100.

- Base: severity weights summed; within one severity the first
  `full_weight_per_severity` discrepancies count fully, later ones at half weight.
- Blend: final = round(base_weight*base + ai_weight*aiScore) when an AI signal exists.
- No AI signal: final = base, flagged degraded.
- Always clamped to [0, score_cap] and rounded half-up (no banker's rounding).
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from bgv_pipeline.models import AiAnalysis, Discrepancy
from bgv_pipeline.tools.settings import EngineSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskScore:
    base: int
    final: int
    ai_score: Optional[float]
    degraded: bool


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp(value: float, cap: int = 100) -> float:
    return max(0.0, min(float(cap), value))


def normalize_risk_level(level: Optional[str]) -> Optional[str]:
    """'HIGH_RISK' / 'high' / ' Medium ' -> 'HIGH' / 'MEDIUM'."""
    if not level:
        return None
    key = str(level).strip().upper()
    if key.endswith("_RISK"):
        key = key[: -len("_RISK")]
    return key or None


def base_score(discrepancies: Iterable[Discrepancy], settings: EngineSettings) -> int:
    counts = Counter(d.severity for d in discrepancies)
    total = 0.0
    for severity, count in counts.items():
        weight = settings.severity_weights.get(severity, 0.0)
        full = min(count, settings.full_weight_per_severity)
        total += full * weight + (count - full) * weight / 2
    return round_half_up(clamp(total, settings.score_cap))


def ai_score(analysis: Optional[AiAnalysis], settings: EngineSettings) -> Optional[float]:
    if analysis is None:
        return None
    level = normalize_risk_level(analysis.risk_level)
    if level not in settings.ai_level_scores:
        LOGGER.warning("Unknown AI risk level %r; ignoring AI signal", analysis.risk_level)
        return None
    confidence = max(0.0, min(1.0, float(analysis.confidence)))
    return settings.ai_level_scores[level] * confidence


def score(discrepancies: Iterable[Discrepancy], analysis: Optional[AiAnalysis],
          settings: EngineSettings) -> RiskScore:
    base = base_score(discrepancies, settings)
    signal = ai_score(analysis, settings)
    if signal is None:
        return RiskScore(base=base, final=base, ai_score=None, degraded=True)
    blended = settings.ai_base_weight * base + settings.ai_weight * signal
    final = round_half_up(clamp(blended, settings.score_cap))
    return RiskScore(base=base, final=final, ai_score=signal, degraded=False)

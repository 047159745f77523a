# -*- coding: utf-8 -*-
"""
Engine settings (YAML-driven).

- thresholds.yaml: severity weights, score bands, date/salary bands, optional fields.
- tiers.yaml: per-SKU policy (max discrepancies, tolerated severities, critical fields).
- Location is controlled by env BGV_CONFIG_DIR (fallback: <package>/config).
- Files are cached and hot-reloaded when their mtime changes (no restart needed).
- Missing knobs fall back to built-in defaults; malformed files raise ConfigError.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import yaml
from jsonschema import ValidationError as SchemaError
from jsonschema import validate as json_validate

from bgv_pipeline.errors import ConfigError
from bgv_pipeline.models import CheckType, Severity, SkuTier
from bgv_pipeline.tools.normalizer import canonical_field

LOGGER = logging.getLogger(__name__)

_DEFAULT_CONFIG_DIR: Path = Path(__file__).resolve().parents[1] / "config"

# path -> {"data": dict, "mtime": float}
_YAML_CACHE: Dict[str, Dict[str, Any]] = {}

_DEFAULT_THRESHOLDS: Dict[str, Any] = {
    "severity_weights": {"HIGH": 30, "MEDIUM": 15, "LOW": 5},
    "full_weight_per_severity": 3,
    "score_cap": 100,
    "ai_blend": {
        "base_weight": 0.7,
        "ai_weight": 0.3,
        "level_scores": {"LOW": 0, "MEDIUM": 50, "HIGH": 100},
    },
    "zone_bands": {"red_above": 70, "yellow_above": 40, "high_priority_above": 85},
    "fuzzy_max_edits": 2,
    "date_bands": {"default_tolerance_days": 0, "medium_max_days": 90},
    "salary_bands": {"match_max_pct": 5, "low_max_pct": 20, "medium_max_pct": 50},
    "default_currency": "INR",
    "domestic_jurisdiction": "IN",
    "optional_fields": {"EMPLOYMENT": [], "EDUCATION": [], "CRIME": []},
}

_SEVERITY_LIST = {"type": "array", "items": {"enum": [s.value for s in Severity]}}

_THRESHOLDS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "severity_weights": {
            "type": "object",
            "properties": {s.value: {"type": "number", "minimum": 0} for s in Severity},
            "additionalProperties": False,
        },
        "full_weight_per_severity": {"type": "integer", "minimum": 0},
        "score_cap": {"type": "integer", "minimum": 1, "maximum": 100},
        "ai_blend": {"type": "object"},
        "zone_bands": {
            "type": "object",
            "properties": {
                "red_above": {"type": "number"},
                "yellow_above": {"type": "number"},
                "high_priority_above": {"type": "number"},
            },
        },
        "fuzzy_max_edits": {"type": "integer", "minimum": 0},
        "date_bands": {"type": "object"},
        "salary_bands": {"type": "object"},
        "default_currency": {"type": "string", "minLength": 3, "maxLength": 3},
        "domestic_jurisdiction": {"type": "string", "minLength": 2},
        "optional_fields": {
            "type": "object",
            "properties": {t.value: {"type": "array", "items": {"type": "string"}} for t in CheckType},
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}

_TIERS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        t.value: {
            "type": "object",
            "properties": {
                "max_discrepancies": {"type": "integer", "minimum": 0},
                "green_severities": _SEVERITY_LIST,
                "red_severities": _SEVERITY_LIST,
                "critical_fields": {"type": "array", "items": {"type": "string"}},
            },
            "additionalProperties": False,
        }
        for t in SkuTier
    },
    "additionalProperties": False,
}


# ------------------------------ Typed settings -------------------------------

@dataclass(frozen=True)
class TierPolicy:
    tier: SkuTier
    max_discrepancies: int = 2
    green_severities: FrozenSet[Severity] = frozenset({Severity.LOW})
    red_severities: FrozenSet[Severity] = frozenset({Severity.HIGH})
    critical_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EngineSettings:
    severity_weights: Mapping[Severity, float]
    full_weight_per_severity: int
    score_cap: int
    ai_base_weight: float
    ai_weight: float
    ai_level_scores: Mapping[str, float]
    red_above: float
    yellow_above: float
    high_priority_above: float
    fuzzy_max_edits: int
    default_tolerance_days: int
    date_medium_max_days: int
    salary_match_max_pct: float
    salary_low_max_pct: float
    salary_medium_max_pct: float
    default_currency: str
    domestic_jurisdiction: str
    optional_fields: Mapping[CheckType, FrozenSet[str]]
    tiers: Mapping[SkuTier, TierPolicy] = field(default_factory=dict)

    def tier(self, sku: SkuTier) -> TierPolicy:
        return self.tiers.get(sku) or TierPolicy(tier=sku)


# ------------------------------ File helpers ---------------------------------

def config_dir() -> Path:
    return Path(os.getenv("BGV_CONFIG_DIR", str(_DEFAULT_CONFIG_DIR))).resolve()


def _file_mtime(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except OSError as exc:
        LOGGER.warning("Failed to stat YAML file %s: %s", path, exc)
        return None


def _load_yaml_hot(path: Path) -> Dict[str, Any]:
    """Cached load with hot-reload on mtime change. Missing file -> {}."""
    if not path.exists():
        LOGGER.warning("Config file %s not found; using built-in defaults", path)
        return {}

    mtime = _file_mtime(path)
    cached = _YAML_CACHE.get(str(path))
    if cached is not None and cached.get("mtime") == mtime:
        return cached["data"]

    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Unreadable YAML in {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {path} must be a mapping")

    _YAML_CACHE[str(path)] = {"data": data, "mtime": mtime}
    return data


def _validated(data: Dict[str, Any], schema: Dict[str, Any], path: Path) -> Dict[str, Any]:
    try:
        json_validate(instance=data, schema=schema)
    except SchemaError as exc:
        raise ConfigError(f"Invalid config {path.name}: {str(exc).splitlines()[0]}") from exc
    return data


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


# ------------------------------ Builders -------------------------------------

def _build_tiers(raw: Dict[str, Any]) -> Dict[SkuTier, TierPolicy]:
    tiers: Dict[SkuTier, TierPolicy] = {}
    for sku in SkuTier:
        knobs = raw.get(sku.value)
        if not knobs:
            tiers[sku] = TierPolicy(tier=sku)
            continue
        tiers[sku] = TierPolicy(
            tier=sku,
            max_discrepancies=int(knobs.get("max_discrepancies", 2)),
            green_severities=frozenset(Severity(s) for s in knobs.get("green_severities", ["LOW"])),
            red_severities=frozenset(Severity(s) for s in knobs.get("red_severities", ["HIGH"])),
            critical_fields=tuple(knobs.get("critical_fields", [])),
        )
    return tiers


def build_settings(thresholds: Dict[str, Any], tiers: Dict[str, Any]) -> EngineSettings:
    t = _merge(_DEFAULT_THRESHOLDS, thresholds)
    blend = t["ai_blend"]
    bands = t["zone_bands"]
    dates = t["date_bands"]
    salary = t["salary_bands"]
    optional = t.get("optional_fields") or {}

    return EngineSettings(
        severity_weights={Severity(k): float(v) for k, v in t["severity_weights"].items()},
        full_weight_per_severity=int(t["full_weight_per_severity"]),
        score_cap=int(t["score_cap"]),
        ai_base_weight=float(blend["base_weight"]),
        ai_weight=float(blend["ai_weight"]),
        ai_level_scores={str(k).upper(): float(v) for k, v in blend["level_scores"].items()},
        red_above=float(bands["red_above"]),
        yellow_above=float(bands["yellow_above"]),
        high_priority_above=float(bands["high_priority_above"]),
        fuzzy_max_edits=int(t["fuzzy_max_edits"]),
        default_tolerance_days=int(dates["default_tolerance_days"]),
        date_medium_max_days=int(dates["medium_max_days"]),
        salary_match_max_pct=float(salary["match_max_pct"]),
        salary_low_max_pct=float(salary["low_max_pct"]),
        salary_medium_max_pct=float(salary["medium_max_pct"]),
        default_currency=str(t["default_currency"]).upper(),
        domestic_jurisdiction=os.getenv("BGV_DOMESTIC_JURISDICTION", str(t["domestic_jurisdiction"])).upper(),
        optional_fields={ct: frozenset(canonical_field(str(name)) for name in optional.get(ct.value, []))
                         for ct in CheckType},
        tiers=_build_tiers(tiers),
    )


def load_settings() -> EngineSettings:
    """Read thresholds.yaml + tiers.yaml from the config dir (hot-reloaded)."""
    base = config_dir()
    thresholds_path = base / "thresholds.yaml"
    tiers_path = base / "tiers.yaml"
    thresholds = _validated(_load_yaml_hot(thresholds_path), _THRESHOLDS_SCHEMA, thresholds_path)
    tiers = _validated(_load_yaml_hot(tiers_path), _TIERS_SCHEMA, tiers_path)
    return build_settings(thresholds, tiers)

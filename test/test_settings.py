# test/test_settings.py
# -*- coding: utf-8 -*-
"""Unit tests for bgv_pipeline.tools.settings (YAML thresholds + SKU tiers).

Tests point BGV_CONFIG_DIR at a temp folder, write YAML there and check the
typed settings, including hot reload when a file's mtime changes.
"""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from bgv_pipeline.errors import ConfigError
from bgv_pipeline.models import CheckType, Severity, SkuTier
from bgv_pipeline.tools import settings as settings_mod


def _write_text(path: Path, text: str) -> None:
    """Write UTF-8 text to a file, creating parent folders if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _bump_mtime(path: Path, seconds: int = 5) -> None:
    """Force a visible mtime change so the hot-reload cache notices."""
    now = time.time()
    os.utime(path, (now + seconds, now + seconds))


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    folder = tmp_path / "config"
    folder.mkdir()
    monkeypatch.setenv("BGV_CONFIG_DIR", str(folder))
    return folder


def test_packaged_defaults():
    s = settings_mod.load_settings()
    assert s.severity_weights[Severity.HIGH] == 30
    assert (s.red_above, s.yellow_above) == (70, 40)
    assert "salary" in s.optional_fields[CheckType.EMPLOYMENT]
    assert s.tier(SkuTier.STANDARD).max_discrepancies == 2
    assert s.tier(SkuTier.ENTERPRISE).green_severities == frozenset()


def test_partial_override_keeps_other_defaults(config_dir: Path):
    _write_text(config_dir / "thresholds.yaml", "zone_bands:\n  red_above: 60\n")
    s = settings_mod.load_settings()
    assert s.red_above == 60
    assert s.yellow_above == 40
    assert s.severity_weights[Severity.MEDIUM] == 15


def test_missing_files_fall_back_to_builtins(config_dir: Path, caplog: pytest.LogCaptureFixture):
    with caplog.at_level("WARNING"):
        s = settings_mod.load_settings()
    assert "using built-in defaults" in caplog.text
    assert s.tier(SkuTier.PREMIUM).max_discrepancies == 2
    assert s.optional_fields[CheckType.EMPLOYMENT] == frozenset()


def test_hot_reload_on_mtime_change(config_dir: Path):
    path = config_dir / "thresholds.yaml"
    _write_text(path, "fuzzy_max_edits: 1\n")
    assert settings_mod.load_settings().fuzzy_max_edits == 1

    _write_text(path, "fuzzy_max_edits: 3\n")
    _bump_mtime(path)
    assert settings_mod.load_settings().fuzzy_max_edits == 3


def test_tier_override(config_dir: Path):
    _write_text(config_dir / "tiers.yaml", "BASIC:\n  max_discrepancies: 5\n  critical_fields: [uanNumber]\n")
    tier = settings_mod.load_settings().tier(SkuTier.BASIC)
    assert tier.max_discrepancies == 5
    assert tier.critical_fields == ("uanNumber",)
    assert tier.red_severities == frozenset({Severity.HIGH})


@pytest.mark.parametrize("filename, text", [
    ("thresholds.yaml", "severity_weights:\n  CRITICAL: 50\n"),
    ("thresholds.yaml", "score_cap: 250\n"),
    ("tiers.yaml", "GOLD:\n  max_discrepancies: 1\n"),
    ("tiers.yaml", "- just\n- a list\n"),
    ("thresholds.yaml", "zone_bands: [unclosed\n"),
])
def test_invalid_config_is_rejected(config_dir: Path, filename: str, text: str):
    _write_text(config_dir / filename, text)
    with pytest.raises(ConfigError):
        settings_mod.load_settings()


def test_domestic_jurisdiction_env_override(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("BGV_DOMESTIC_JURISDICTION", "sg")
    assert settings_mod.load_settings().domestic_jurisdiction == "SG"

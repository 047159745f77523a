import os, json, datetime
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from bgv_pipeline.models import ClientPolicy, ComparisonRequest, VerificationContext
from bgv_pipeline.tools.activity import ActivityLogger
from bgv_pipeline.tools.checks import CheckService
from bgv_pipeline.tools.settings import load_settings

REFERENCE_DATE = date(2025, 1, 15)

CLEAN_RECORD: Dict[str, Any] = {
    "employeeName": "Ravi Kumar",
    "companyName": "Acme Technologies Pvt Ltd",
    "designation": "Senior Engineer",
    "employmentDates": "2020-01-01 to 2023-06-30",
    "salary": "50000",
}


@pytest.fixture(autouse=True)
def _isolated_runtime(tmp_path, monkeypatch):
    """Keep activity DB / JSONL and config overrides inside the test's tmp dir."""
    monkeypatch.setenv("BGV_ACTIVITY_DB_PATH", str(tmp_path / "activity.db"))
    monkeypatch.setenv("BGV_ACTIVITY_LOG_DIR", str(tmp_path / "runlogs"))
    monkeypatch.delenv("BGV_CONFIG_DIR", raising=False)
    monkeypatch.delenv("BGV_DOMESTIC_JURISDICTION", raising=False)


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def make_request():
    def _make(
        claimed: Optional[Dict[str, Any]] = None,
        verified: Optional[Dict[str, Any]] = None,
        *,
        check_id: str = "CHK-1",
        sku: str = "STANDARD",
        instructions: Optional[List[str]] = None,
        **context: Any,
    ) -> ComparisonRequest:
        return ComparisonRequest(
            check_id=check_id,
            claimed_data=dict(CLEAN_RECORD) if claimed is None else claimed,
            verified_data=dict(CLEAN_RECORD) if verified is None else verified,
            client_policy=ClientPolicy(sku_name=sku, special_instructions=instructions or []),
            context=VerificationContext(**context),
        )

    return _make


@pytest.fixture
def service(tmp_path, settings):
    activity = ActivityLogger(db_path=tmp_path / "activity.db", log_dir=tmp_path / "runlogs")
    return CheckService(activity=activity, settings=settings, max_workers=4)


def pytest_sessionfinish(session, exitstatus):
    """Hook to save a test-run summary to logs/test_results.json"""
    report = {
        "timestamp": datetime.datetime.now().isoformat(),
        "exitstatus": exitstatus,
        "total_tests": session.testscollected,
        "outcome": "passed" if exitstatus == 0 else "failed",
    }

    # resolve path safely relative to pytest rootdir
    project_root = session.config.rootpath or os.getcwd()
    logs_dir = os.path.join(project_root, "logs")
    os.makedirs(logs_dir, exist_ok=True)

    result_path = os.path.join(logs_dir, "test_results.json")
    with open(result_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)

    print(f"\nTest report saved to {result_path}\n")


@pytest.fixture
def reference_date():
    return REFERENCE_DATE


# src/bgv_pipeline/tools/activity.py
import json
import logging
import os
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from bgv_pipeline.models import ActivityEvent, ComparisonResult, ReviewDecision, Zone

LOGGER = logging.getLogger(__name__)

# ---------- helpers ----------

def _ensure_db_schema(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS activity_logs (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                log_id        TEXT NOT NULL UNIQUE,
                entity_type   TEXT NOT NULL,          -- check | case
                entity_id     TEXT NOT NULL,
                action        TEXT NOT NULL,
                description   TEXT,
                check_id      TEXT,
                zone          TEXT,
                risk_score    INTEGER,
                actor         TEXT,
                metadata      TEXT,                   -- JSON-encoded dict
                timestamp     TEXT NOT NULL           -- UTC ISO 8601
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_activity_entity ON activity_logs (entity_type, entity_id)"
        )
        conn.commit()


def _insert_db_record(db_path: Path, event: ActivityEvent) -> int:
    _ensure_db_schema(db_path)
    with sqlite3.connect(db_path) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO activity_logs
              (log_id, entity_type, entity_id, action, description, check_id,
               zone, risk_score, actor, metadata, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.log_id,
                event.entity_type,
                event.entity_id,
                event.action,
                event.description,
                event.check_id,
                event.zone.value if event.zone else None,
                event.risk_score,
                event.actor,
                json.dumps(event.metadata, ensure_ascii=False),
                event.timestamp,
            ),
        )
        conn.commit()
        return int(cur.lastrowid)


def _append_jsonl_in_dir(out_dir: Path, payload: dict) -> Path:
    """Append as JSONL into <out_dir>/activity.jsonl (ensure dir exists)."""
    out_dir.mkdir(parents=True, exist_ok=True)
    fpath = out_dir / "activity.jsonl"
    with fpath.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False) + "\n")
    return fpath


def _row_to_event(row: sqlite3.Row) -> ActivityEvent:
    return ActivityEvent(
        log_id=row["log_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        action=row["action"],
        description=row["description"] or "",
        check_id=row["check_id"],
        zone=Zone(row["zone"]) if row["zone"] else None,
        risk_score=row["risk_score"],
        actor=row["actor"],
        metadata=json.loads(row["metadata"] or "{}"),
        timestamp=row["timestamp"],
    )


# ---------- logger ----------

class ActivityLogger:
    """
    Immutable event stream of classifications and review decisions (sqlite + JSONL).
    Write failures are logged and swallowed: activity logging never breaks a check.
    """

    def __init__(self, db_path: Optional[Path] = None, log_dir: Optional[Path] = None) -> None:
        self.db_path = Path(db_path or os.getenv("BGV_ACTIVITY_DB_PATH", "bgv_local.db"))
        self.log_dir = Path(log_dir or os.getenv("BGV_ACTIVITY_LOG_DIR", "runlogs"))
        self._lock = threading.Lock()

    def log(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        description: str = "",
        *,
        check_id: Optional[str] = None,
        zone: Optional[Zone] = None,
        risk_score: Optional[int] = None,
        actor: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityEvent:
        event = ActivityEvent(
            log_id=f"LOG-{uuid.uuid4().hex[:12]}",
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            description=description,
            check_id=check_id,
            zone=zone,
            risk_score=risk_score,
            actor=actor,
            metadata=metadata or {},
        )
        with self._lock:
            # DB insert (never crash if DB write fails)
            try:
                _insert_db_record(self.db_path, event)
            except (sqlite3.Error, OSError) as exc:
                LOGGER.warning("Activity DB write failed for %s/%s: %s", entity_type, entity_id, exc)
            try:
                _append_jsonl_in_dir(self.log_dir, event.to_wire())
            except OSError as exc:
                LOGGER.warning("Activity JSONL append failed for %s/%s: %s", entity_type, entity_id, exc)
        return event

    def log_classification(self, result: ComparisonResult, actor: str, *, case_id: Optional[str] = None,
                           version: int = 1) -> ActivityEvent:
        return self.log(
            "check",
            result.check_id,
            "CLASSIFIED",
            f"Check classified {result.zone.value}: {result.summary.message}",
            check_id=result.check_id,
            zone=result.zone,
            risk_score=result.risk_score,
            actor=actor,
            metadata={
                "caseId": case_id,
                "version": version,
                "action": result.summary.action.value,
                "discrepancies": len(result.discrepancies),
                "degraded": result.rule_evaluation.degraded,
            },
        )

    def log_review(self, decision: ReviewDecision, risk_score: Optional[int]) -> ActivityEvent:
        return self.log(
            "check",
            decision.check_id,
            "REVIEWED",
            f"Review {decision.decision.value}" + (f": {decision.notes}" if decision.notes else ""),
            check_id=decision.check_id,
            zone=decision.new_zone,
            risk_score=risk_score,
            actor=decision.reviewed_by,
            metadata={"previousZone": decision.previous_zone.value if decision.previous_zone else None},
        )

    def list_activity(self, entity_type: str, entity_id: str) -> List[ActivityEvent]:
        """Newest first; empty when the DB does not exist yet."""
        if not self.db_path.exists():
            return []
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT * FROM activity_logs
                WHERE entity_type = ? AND entity_id = ?
                ORDER BY timestamp DESC, id DESC
                """,
                (entity_type, entity_id),
            ).fetchall()
        return [_row_to_event(r) for r in rows]

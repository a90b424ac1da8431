# sdr/logger.py
"""
Run Logger
----------
Lightweight utility to record every scheduled job result
(nudges, reminders, reactivation, campaigns) to the 'Job Runs' table.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from sdr.airtable_schema import job_runs_field_map
from sdr.datastore import CONNECTOR, _safe_create
from sdr.runtime import get_logger, iso_now

logger = get_logger("run_logger")

RUN_FIELDS = job_runs_field_map()


def _breakdown_text(breakdown: Any) -> str:
    if breakdown is None:
        return "{}"
    if isinstance(breakdown, str):
        return breakdown
    try:
        return json.dumps(breakdown, default=str, ensure_ascii=False)[:10000]
    except (TypeError, ValueError):
        return str(breakdown)


def log_run(
    run_type: str,
    processed: int = 0,
    breakdown: dict | str | None = None,
    status: str = "OK",
) -> Dict[str, Any]:
    """
    Log a job run into the Job Runs table. Never raises.
    Example:
        log_run("NUDGES", processed=12, breakdown={"sent": 11, "failed": 1})
    """
    record = {
        RUN_FIELDS["TYPE"]: run_type,
        RUN_FIELDS["PROCESSED"]: processed,
        RUN_FIELDS["BREAKDOWN"]: _breakdown_text(breakdown),
        RUN_FIELDS["STATUS"]: status,
        RUN_FIELDS["TIMESTAMP"]: iso_now(),
    }
    try:
        _safe_create(CONNECTOR.job_runs(), record)
        logger.info(f"📝 Logged run: {run_type} | {status} | processed={processed}")
        return {"ok": True, "action": "created", "type": run_type, "status": status}
    except Exception as e:
        logger.error(f"❌ log_run failed: {run_type}: {e}", exc_info=True)
        return {"ok": False, "error": str(e)}

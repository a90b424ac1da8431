# sdr/jobs.py
"""
🕒 Scheduled jobs
-----------------
Every periodic unit of work, its cron schedule, and the HTTP/CLI triggers
an external scheduler (Render cron, GitHub Actions, crontab) calls.

  nudges                 */5 * * * *
  meeting-reminders      */10 * * * *
  morning-reactivation   50 7 * * *
  reset-reminder-flags   1 0 * * *

Each run is retried on exceptions and its result written to Job Runs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from sdr.campaign_runner import process_campaign
from sdr.config import settings
from sdr.logger import log_run
from sdr.nudges import morning_reactivation, scan_and_send_nudges
from sdr.reminders import reset_daily_reminder_flags, scan_meeting_reminders
from sdr.runtime import get_logger, retry

log = get_logger("jobs")

router = APIRouter(prefix="/jobs", tags=["jobs"])


@dataclass(frozen=True)
class Job:
    name: str
    schedule: str
    func: Callable[[], Dict[str, Any]]
    run_type: str


JOBS: Dict[str, Job] = {
    "nudges": Job("nudges", "*/5 * * * *", lambda: scan_and_send_nudges(), "NUDGES"),
    "meeting-reminders": Job("meeting-reminders", "*/10 * * * *", lambda: scan_meeting_reminders(), "MEETING_REMINDERS"),
    "morning-reactivation": Job("morning-reactivation", "50 7 * * *", lambda: morning_reactivation(), "MORNING_REACTIVATION"),
    "reset-reminder-flags": Job("reset-reminder-flags", "1 0 * * *", lambda: reset_daily_reminder_flags(), "RESET_REMINDER_FLAGS"),
}


class UnknownJobError(KeyError):
    pass


def _breakdown(result: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in result.items() if k != "results"}


def _run_logged(run_type: str, func: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    try:
        result = retry(func, retries=max(settings().JOB_MAX_RETRIES - 1, 0), logger=log)
    except Exception as exc:
        log.error(f"❌ {run_type} failed after retries: {exc}", exc_info=True)
        result = {"status": "Failed", "error": str(exc)}
    status = "ERROR" if result.get("status") == "Failed" else "OK"
    log_run(run_type, processed=int(result.get("processed") or result.get("leads_processed") or 0), breakdown=_breakdown(result), status=status)
    return result


def run_job(name: str) -> Dict[str, Any]:
    job = JOBS.get(name)
    if job is None:
        raise UnknownJobError(name)
    log.info(f"▶️ Running job {name}")
    return _run_logged(job.run_type, job.func)


def run_campaign_job(campaign_id: str) -> Dict[str, Any]:
    return _run_logged("CAMPAIGN", lambda: process_campaign(campaign_id))


# ─────────────────────────── Auth ───────────────────────────
def _extract_token(request: Request, qp_token: Optional[str], h_cron: Optional[str]) -> str:
    if qp_token:
        return qp_token
    if h_cron:
        return h_cron
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1]
    return ""


def require_cron(request: Request, qp_token: Optional[str], h_cron: Optional[str]) -> None:
    expected = settings().CRON_TOKEN
    if not expected:
        return
    if _extract_token(request, qp_token, h_cron) != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


# ─────────────────────────── Routes ───────────────────────────
@router.get("")
async def list_jobs():
    return {"ok": True, "jobs": {name: job.schedule for name, job in JOBS.items()}}


@router.post("/campaign/{campaign_id}")
async def trigger_campaign(
    campaign_id: str,
    request: Request,
    x_cron_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
):
    require_cron(request, token, x_cron_token)
    result = await asyncio.to_thread(run_campaign_job, campaign_id)
    return {"ok": result.get("status") != "Failed", "campaign_id": campaign_id, "result": result}


@router.post("/{job_name}")
async def trigger_job(
    job_name: str,
    request: Request,
    x_cron_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
):
    require_cron(request, token, x_cron_token)
    if job_name not in JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown job '{job_name}'")
    result = await asyncio.to_thread(run_job, job_name)
    return {"ok": result.get("status") != "Failed", "job": job_name, "result": result}


# ---------- CLI ----------
def _parse_args():
    p = argparse.ArgumentParser(description="Run one scheduled job")
    p.add_argument("job", choices=sorted(JOBS) + ["campaign"], help="Job name")
    p.add_argument("--campaign", type=str, default=None, help="Campaign record id (job=campaign)")
    return p.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    if args.job == "campaign":
        if not args.campaign:
            raise SystemExit("--campaign is required for the campaign job")
        res = run_campaign_job(args.campaign)
    else:
        res = run_job(args.job)
    print(json.dumps(res, indent=2, default=str))

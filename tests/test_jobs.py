import json

import pytest
from fastapi.testclient import TestClient

import sdr.jobs as jobs
from sdr.datastore import CONNECTOR


def _runs():
    return [r["fields"] for r in CONNECTOR.job_runs().table.all()]


def test_registry_schedules():
    assert {name: job.schedule for name, job in jobs.JOBS.items()} == {
        "nudges": "*/5 * * * *",
        "meeting-reminders": "*/10 * * * *",
        "morning-reactivation": "50 7 * * *",
        "reset-reminder-flags": "1 0 * * *",
    }


def test_run_job_logs_result_to_job_runs():
    res = jobs.run_job("reset-reminder-flags")

    assert res["status"] == "Daily reminder flags reset successfully"
    runs = _runs()
    assert len(runs) == 1
    assert runs[0]["Type"] == "RESET_REMINDER_FLAGS"
    assert runs[0]["Status"] == "OK"
    assert json.loads(runs[0]["Breakdown"])["processed"] == 0


def test_run_job_retries_then_records_failure(monkeypatch):
    monkeypatch.setenv("JOB_MAX_RETRIES", "3")
    jobs.settings.cache_clear()
    monkeypatch.setattr("sdr.runtime.time.sleep", lambda s: None)
    attempts = []

    def boom():
        attempts.append(1)
        raise RuntimeError("airtable down")

    monkeypatch.setitem(jobs.JOBS, "nudges", jobs.Job("nudges", "*/5 * * * *", boom, "NUDGES"))

    res = jobs.run_job("nudges")

    assert len(attempts) == 3
    assert res == {"status": "Failed", "error": "airtable down"}
    assert _runs()[0]["Status"] == "ERROR"


def test_unknown_job():
    with pytest.raises(jobs.UnknownJobError):
        jobs.run_job("nope")


def test_http_trigger_requires_cron_token(monkeypatch):
    monkeypatch.setenv("CRON_TOKEN", "tok")
    jobs.settings.cache_clear()
    from sdr.main import app

    client = TestClient(app)

    assert client.post("/jobs/reset-reminder-flags").status_code == 401
    assert client.post("/jobs/reset-reminder-flags", params={"token": "tok"}).status_code == 200
    assert client.post("/jobs/reset-reminder-flags", headers={"X-Cron-Token": "tok"}).status_code == 200
    r = client.post("/jobs/reset-reminder-flags", headers={"Authorization": "Bearer tok"})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert client.post("/jobs/unknown", params={"token": "tok"}).status_code == 404


def test_campaign_trigger_runs_campaign(monkeypatch):
    seen = []
    monkeypatch.setattr(jobs, "process_campaign", lambda cid: seen.append(cid) or {"status": "Success", "leads_processed": 0})
    from sdr.main import app

    r = TestClient(app).post("/jobs/campaign/rec_camp")

    assert r.status_code == 200
    assert r.json()["result"]["status"] == "Success"
    assert seen == ["rec_camp"]
    assert _runs()[0]["Type"] == "CAMPAIGN"


def test_health_and_ping():
    from sdr.main import app

    client = TestClient(app)
    health = client.get("/health").json()
    assert health["ok"] is True
    assert "business_hours" in health and "local_time" in health
    assert client.get("/ping").json()["pong"] is True

import os
import sys
from datetime import datetime, timezone

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from sdr.buffer import reset_buffer
from sdr.config import settings
from sdr.datastore import CONNECTOR, lead_fields, reset_state
from sdr.webhook import reset_idempotency_store

# Tuesday 11:00 in São Paulo, inside business hours
BUSINESS_NOON = datetime(2025, 8, 12, 14, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_datastore(monkeypatch):
    for key in [
        "AIRTABLE_API_KEY",
        "SDR_BASE",
        "AIRTABLE_SDR_BASE_ID",
        "REDIS_URL",
        "CRON_TOKEN",
        "BUFFER_BACKEND",
        "BUFFER_MERGE_BURSTS",
        "BUSINESS_HOURS_ENFORCED",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SDR_FORCE_IN_MEMORY", "1")
    monkeypatch.setenv("SEND_DELAY_MS", "0")
    monkeypatch.setenv("CAMPAIGN_PACE_SECONDS", "0")
    monkeypatch.setenv("JOB_MAX_RETRIES", "1")
    settings.cache_clear()
    reset_state()
    reset_buffer()
    reset_idempotency_store()
    yield
    reset_buffer()
    settings.cache_clear()


@pytest.fixture
def make_lead():
    def _make(**changes):
        fields = {
            "CLIENT_ID": "client_1",
            "NAME": "Ana",
            "PHONE": "5511999990001",
            "STATUS": "CONTACTED",
            "AI_STATUS": "active",
            "NUDGE_STEP": 0,
        }
        fields.update(changes)
        return CONNECTOR.leads().table.create(lead_fields({k: v for k, v in fields.items() if v is not None}))["id"]

    return _make


@pytest.fixture
def sent(monkeypatch):
    """Capture outbound WhatsApp sends instead of hitting the Graph API."""
    import sdr.whatsapp_sender as whatsapp_sender

    calls = []

    def fake_send_text(to, message):
        calls.append((to, message))
        return {"status": "sent", "id": f"wamid.{len(calls)}", "raw": {}}

    monkeypatch.setattr(whatsapp_sender, "send_text", fake_send_text)
    return calls

# sdr/campaign_runner.py
"""
🚀 Campaign Runner
------------------
Opening-template blast for a campaign's NEW leads:

  fetch campaign → fetch NEW leads → per lead: template → CONTACTED → pause
  → campaign COMPLETED

One lead failing never stops the run, and the campaign is marked COMPLETED
even when some leads failed.
"""

from __future__ import annotations

import argparse
import json
import time
from typing import Any, Dict, List, Optional, Sequence

from sdr.airtable_schema import CampaignStatus, LeadStatus, campaign_field_map
from sdr.config import settings
from sdr.datastore import REPOSITORY, Lead
from sdr.runtime import get_logger, retry, utc_now
from sdr.whatsapp_sender import WhatsAppError, send_template

log = get_logger("campaign_runner")

CAMPAIGN_FIELDS = campaign_field_map()


class CampaignNotFoundError(LookupError):
    pass


def _pace() -> None:
    delay = settings().CAMPAIGN_PACE_SECONDS
    if delay > 0:
        time.sleep(delay)


def _send_with_retry(phone: str, template_name: str, components: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return retry(
        lambda: send_template(phone, template_name, components),
        retries=max(settings().JOB_MAX_RETRIES - 1, 0),
        exceptions=(WhatsAppError,),
        logger=log,
    )


def name_component(lead: Lead) -> List[Dict[str, Any]]:
    return [{"type": "body", "parameters": [{"type": "text", "text": lead.name or "cliente"}]}]


def _contact_lead(lead: Lead, template_name: str) -> str:
    if not lead.phone:
        log.warning(f"⚠️ Lead {lead.id} ({lead.name}) has no phone number. Skipping.")
        return "skipped"
    _send_with_retry(lead.phone, template_name)
    REPOSITORY.update_lead(lead.id, {"STATUS": LeadStatus.CONTACTED.value, "LAST_OUTGOING_AT": utc_now()})
    return "sent"


def process_campaign(campaign_id: str) -> Dict[str, Any]:
    campaign = REPOSITORY.get_campaign(campaign_id)
    if not campaign:
        raise CampaignNotFoundError(f"Campaign {campaign_id} not found")

    fields = campaign.get("fields", {}) or {}
    template_name = fields.get(CAMPAIGN_FIELDS["TEMPLATE_NAME"]) or settings().DEFAULT_TEMPLATE
    name = fields.get(CAMPAIGN_FIELDS["NAME"]) or campaign_id

    leads = REPOSITORY.new_leads_for_campaign(campaign_id)
    if not leads:
        log.info(f"📭 Campaign '{name}' has no NEW leads.")
        REPOSITORY.update_campaign(campaign_id, CampaignStatus.COMPLETED.value)
        return {"status": "Completed", "campaign_id": campaign_id, "leads_processed": 0}

    log.info(f"🚀 Campaign '{name}' → {len(leads)} lead(s) with template '{template_name}'")
    counts = {"sent": 0, "skipped": 0, "failed": 0}
    try:
        for i, lead in enumerate(leads):
            try:
                counts[_contact_lead(lead, template_name)] += 1
            except Exception as exc:
                counts["failed"] += 1
                log.error(f"❌ Campaign send failed for lead {lead.id}: {exc}", exc_info=True)
            if i < len(leads) - 1:
                _pace()
    finally:
        REPOSITORY.update_campaign(campaign_id, CampaignStatus.COMPLETED.value)

    log.info(f"✅ Campaign '{name}' completed: {counts}")
    return {"status": "Success", "campaign_id": campaign_id, "leads_processed": len(leads), **counts}


def start_reactivation_campaign(campaign_id: str) -> Dict[str, Any]:
    """DRAFT → ACTIVE, then run the blast."""
    if not REPOSITORY.get_campaign(campaign_id):
        raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
    REPOSITORY.update_campaign(campaign_id, CampaignStatus.ACTIVE.value)
    return process_campaign(campaign_id)


def run_follow_up_blast(lead_ids: Sequence[str], template_name: str, client_id: Optional[str] = None) -> Dict[str, Any]:
    """Re-send a template to leads that never answered the opening one.

    Each contacted lead is marked REACTIVATION_SENT with last_followup_at stamped.
    """
    counts = {"sent": 0, "skipped": 0, "failed": 0}
    ids = list(dict.fromkeys(lead_ids))
    for i, lead_id in enumerate(ids):
        try:
            lead = REPOSITORY.get_lead(lead_id)
            if lead is None or not lead.phone or (client_id and lead.client_id != client_id):
                counts["skipped"] += 1
                continue
            _send_with_retry(lead.phone, template_name, name_component(lead))
            now = utc_now()
            REPOSITORY.update_lead(
                lead.id,
                {"STATUS": LeadStatus.REACTIVATION_SENT.value, "LAST_FOLLOWUP_AT": now, "LAST_OUTGOING_AT": now},
            )
            counts["sent"] += 1
        except Exception as exc:
            counts["failed"] += 1
            log.error(f"❌ Follow-up failed for lead {lead_id}: {exc}", exc_info=True)
        if i < len(ids) - 1:
            _pace()

    log.info(f"📨 Follow-up blast '{template_name}': {counts}")
    return {"status": "Success", "leads_processed": len(ids), **counts}


# ---------- CLI ----------
def _parse_args():
    p = argparse.ArgumentParser(description="Campaign Runner")
    p.add_argument("campaign_id", help="Campaign record id")
    p.add_argument("--activate", action="store_true", help="Mark the campaign ACTIVE before sending")
    return p.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    try:
        res = start_reactivation_campaign(args.campaign_id) if args.activate else process_campaign(args.campaign_id)
        print(json.dumps(res, indent=2))
    except Exception as e:
        log.error(f"Campaign run failed: {e}")
        raise

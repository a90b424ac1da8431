# sdr/nudges.py
"""
🔔 Nudge Scheduler + Morning Reactivation
-----------------------------------------
scan_and_send_nudges   every 5 min inside business hours; one nudge per
                       due lead, nudge_sequence_step += 1
morning_reactivation   daily 07:50; greets leads left unanswered since
                       20:00 yesterday and restarts the cadence at step 0

Leads are processed one at a time. Each lead's write is guarded on the
step and last-outbound values the scan read, so a reply or another run
landing in between makes this run skip the lead instead of double-sending.
"""

from __future__ import annotations

import argparse
import json
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sdr.ai.decision import TextDecision, get_decision
from sdr.airtable_schema import MessageDirection
from sdr.cadence import in_business_hours, reactivation_cutoff
from sdr.datastore import REPOSITORY, Lead, NudgeCandidate
from sdr.runtime import get_logger, utc_now
from sdr.whatsapp_sender import send_sequential

log = get_logger("nudges")

NUDGE_FALLBACK = "Só para garantir que recebeu minha última mensagem. 😊"
MORNING_FALLBACK = "Bom dia, {name}! Espero que esteja bem. Só retomando nossa conversa de ontem... 😊"


def nudge_instruction(step: int, minutes_silent: float) -> str:
    return (
        f"[Instrução: O lead não respondeu há {round(minutes_silent)} minutos. "
        f"Este é o nudge {step + 1}. Continue a conversa com uma mensagem curta e natural "
        f"para reengajá-lo. Não tente agendar reunião, apenas reative a conversa.]"
    )


def reactivation_instruction(name: str) -> str:
    return (
        f"[Instrução: É um novo dia! Reative a conversa com {name} de forma natural e amigável. "
        f"Use uma mensagem de bom dia que retome o assunto da conversa anterior. "
        f"Aproveite a janela de 24h do WhatsApp.]"
    )


def scan_clock(now: datetime) -> Callable[[], datetime]:
    """Wall time during a scan, anchored on the scan's ``now``."""
    started = time.monotonic()
    return lambda: now + timedelta(seconds=time.monotonic() - started)


def _reply_segments(history: List[Dict[str, str]], client_id: Optional[str], fallback: str) -> List[str]:
    """Model text, or the fixed fallback when it asks for a tool (no meeting pitch here)."""
    decision = get_decision(history, client_id)
    if isinstance(decision, TextDecision):
        segments = [s for s in decision.segments if s and s.strip()]
        if segments:
            return segments
    log.warning("🔧 Model returned a tool call or empty text during re-engagement; using fallback.")
    return [fallback]


def _deliver(
    lead: Lead,
    segments: List[str],
    expected: Dict[str, Any],
    changes: Dict[str, Any],
) -> bool:
    """Claim the lead with a guarded write, then send. A failed send reverts the claim."""
    if not REPOSITORY.update_lead_if(lead.id, expected, changes):
        return False
    try:
        send_sequential(lead.phone, segments)
    except Exception:
        REPOSITORY.update_lead_if(lead.id, changes, expected)
        raise
    REPOSITORY.insert_message(
        lead_id=lead.id,
        client_id=lead.client_id,
        direction=MessageDirection.OUTBOUND,
        content=" ".join(segments),
    )
    return True


# ============================================================
# NUDGES
# ============================================================


def _nudge_one(candidate: NudgeCandidate, clock: Callable[[], datetime]) -> Dict[str, Any]:
    lead = REPOSITORY.get_lead(candidate.lead_id)
    if lead is None:
        return {"lead_id": candidate.lead_id, "status": "skipped", "reason": "lead_missing"}
    if (
        lead.is_paused
        or not lead.awaiting_reply
        or lead.nudge_sequence_step != candidate.nudge_step
        or lead.last_outgoing_message_at != candidate.last_outgoing_message_at
    ):
        return {"lead_id": lead.id, "status": "skipped", "reason": "stale"}

    history = REPOSITORY.recent_history(lead.id)
    history.append({"role": "system", "content": nudge_instruction(candidate.nudge_step, candidate.minutes_since_last_message)})
    segments = _reply_segments(history, lead.client_id, NUDGE_FALLBACK)

    next_step = candidate.nudge_step + 1
    delivered = _deliver(
        lead,
        segments,
        expected={"NUDGE_STEP": candidate.nudge_step, "LAST_OUTGOING_AT": candidate.last_outgoing_message_at},
        changes={"NUDGE_STEP": next_step, "LAST_OUTGOING_AT": clock()},
    )
    if not delivered:
        return {"lead_id": lead.id, "status": "skipped", "reason": "conflict"}
    log.info(f"🔔 Sent nudge {next_step} to lead {lead.id}")
    return {"lead_id": lead.id, "status": "sent", "step": next_step}


def scan_and_send_nudges(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    if not in_business_hours(now):
        log.info("🌙 Outside business hours; nudges paused.")
        return {"status": "Outside business hours", "processed": 0}

    try:
        candidates = REPOSITORY.leads_needing_nudge(now)
    except Exception as exc:
        log.error(f"❌ Could not fetch leads needing nudge: {exc}", exc_info=True)
        return {"status": "Failed", "error": str(exc)}

    if not candidates:
        return {"status": "No leads need nudging", "processed": 0}

    log.info(f"🔎 {len(candidates)} lead(s) due for a nudge.")
    clock = scan_clock(now)
    counts: Dict[str, int] = defaultdict(int)
    results: List[Dict[str, Any]] = []
    for candidate in candidates:
        try:
            result = _nudge_one(candidate, clock)
        except Exception as exc:
            log.error(f"❌ Nudge failed for lead {candidate.lead_id}: {exc}", exc_info=True)
            result = {"lead_id": candidate.lead_id, "status": "failed", "error": str(exc)}
        counts[result["status"]] += 1
        results.append(result)

    return {"status": "Nudge scan completed", "processed": len(candidates), **counts, "results": results}


# ============================================================
# MORNING REACTIVATION
# ============================================================


def _reactivate_one(lead: Lead, clock: Callable[[], datetime]) -> Dict[str, Any]:
    if not lead.phone:
        return {"lead_id": lead.id, "status": "skipped", "reason": "no_phone"}
    name = lead.name or "tudo bem"
    history = REPOSITORY.recent_history(lead.id)
    history.append({"role": "system", "content": reactivation_instruction(name)})
    segments = _reply_segments(history, lead.client_id, MORNING_FALLBACK.format(name=name))

    delivered = _deliver(
        lead,
        segments,
        expected={"LAST_OUTGOING_AT": lead.last_outgoing_message_at, "NUDGE_STEP": lead.nudge_sequence_step},
        changes={"LAST_OUTGOING_AT": clock(), "NUDGE_STEP": 0},
    )
    if not delivered:
        return {"lead_id": lead.id, "status": "skipped", "reason": "conflict"}
    log.info(f"🌅 Reactivated lead {lead.id}")
    return {"lead_id": lead.id, "status": "sent"}


def morning_reactivation(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    cutoff = reactivation_cutoff(now)
    try:
        leads = REPOSITORY.leads_to_reactivate(cutoff)
    except Exception as exc:
        log.error(f"❌ Could not fetch leads to reactivate: {exc}", exc_info=True)
        return {"status": "Failed", "error": str(exc)}

    if not leads:
        return {"status": "No leads to reactivate", "processed": 0}

    log.info(f"🌅 Reactivating {len(leads)} lead(s) silent since {cutoff.isoformat()}")
    clock = scan_clock(now)
    counts: Dict[str, int] = defaultdict(int)
    results: List[Dict[str, Any]] = []
    for lead in leads:
        try:
            result = _reactivate_one(lead, clock)
        except Exception as exc:
            log.error(f"❌ Reactivation failed for lead {lead.id}: {exc}", exc_info=True)
            result = {"lead_id": lead.id, "status": "failed", "error": str(exc)}
        counts[result["status"]] += 1
        results.append(result)

    return {"status": "Morning reactivation completed", "processed": len(leads), **counts, "results": results}


# ---------- CLI ----------
def _parse_args():
    p = argparse.ArgumentParser(description="Nudge scanner")
    p.add_argument("--morning", action="store_true", help="Run the morning reactivation sweep instead")
    return p.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    res = morning_reactivation() if args.morning else scan_and_send_nudges()
    print(json.dumps(res, indent=2, default=str))

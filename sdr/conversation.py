# sdr/conversation.py
"""
💬 Conversation Dispatcher
--------------------------
One inbound WhatsApp message in, at most one outbound action out:

  load lead → pause guard → normalise content → persist inbound →
  load history → AI decision → send text | run tool

Never raises. Every outcome is a result dict; retrying a failed unit is
left to whoever invoked it.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sdr.ai.decision import TextDecision, get_decision
from sdr.ai.media import describe_image, transcribe_audio
from sdr.airtable_schema import MessageDirection
from sdr.datastore import REPOSITORY, Lead
from sdr.runtime import get_logger, utc_now
from sdr.tools import resolve_tool
from sdr.whatsapp_sender import get_media_url, send_sequential

log = get_logger("conversation")


class LeadNotFoundError(LookupError):
    pass


def extract_content(message: Dict[str, Any]) -> Optional[str]:
    """Text for the conversation history, or None for message types we don't handle."""
    kind = (message or {}).get("type")
    if kind == "text":
        return ((message.get("text") or {}).get("body") or "").strip()
    if kind == "audio":
        audio = message.get("audio") or {}
        url = get_media_url(audio["id"])
        return transcribe_audio(url, audio.get("mime_type") or "audio/ogg")
    if kind == "image":
        image = message.get("image") or {}
        url = get_media_url(image["id"])
        description = describe_image(url, image.get("mime_type") or "image/jpeg")
        caption = (image.get("caption") or "").strip()
        return f"{description}\n\nLegenda: {caption}" if caption else description
    return None


def _send_text_reply(lead: Lead, segments: List[str]) -> None:
    if not lead.phone:
        raise ValueError(f"Lead {lead.id} has no phone number")
    sent_at = utc_now()
    send_sequential(lead.phone, segments)
    REPOSITORY.insert_message(
        lead_id=lead.id,
        client_id=lead.client_id,
        direction=MessageDirection.OUTBOUND,
        content=" ".join(segments),
    )
    REPOSITORY.update_lead(lead.id, {"LAST_OUTGOING_AT": sent_at})


def handle_inbound_message(lead_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
    try:
        lead = REPOSITORY.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(f"Lead {lead_id} not found")

        if lead.is_paused:
            log.info(f"⏸ AI paused for lead {lead_id}; ignoring inbound.")
            return {"status": "AI paused", "lead_id": lead_id}

        content = extract_content(message)
        if content is None:
            log.info(f"🚫 Unsupported message type '{(message or {}).get('type')}' from lead {lead_id}")
            return {"status": "Unsupported message type", "lead_id": lead_id}

        REPOSITORY.insert_message(
            lead_id=lead_id,
            client_id=lead.client_id,
            direction=MessageDirection.INBOUND,
            content=content,
        )
        REPOSITORY.update_lead(lead_id, {"LAST_INCOMING_AT": utc_now()})

        history = REPOSITORY.recent_history(lead_id)
        decision = get_decision(history, lead.client_id)

        if isinstance(decision, TextDecision):
            segments = [s for s in decision.segments if s and s.strip()]
            if not segments:
                log.warning(f"🫥 Model returned an empty reply for lead {lead_id}; nothing sent.")
                return {"status": "Empty reply", "lead_id": lead_id, "intent": "text"}
            _send_text_reply(lead, segments)
            log.info(f"✅ Replied to lead {lead_id} with {len(segments)} segment(s)")
            return {"status": "Processed successfully", "lead_id": lead_id, "intent": "text"}

        tool = resolve_tool(decision.name)
        if tool is None:
            log.warning(f"⚠️ Unknown tool requested by model: {decision.name} (lead {lead_id})")
            return {
                "status": "Processed successfully",
                "lead_id": lead_id,
                "intent": "tool_call",
                "tool": decision.name,
                "executed": False,
            }

        result = tool.execute(lead, decision.arguments)
        return {
            "status": "Processed successfully",
            "lead_id": lead_id,
            "intent": "tool_call",
            "tool": decision.name,
            "executed": True,
            "tool_status": result.status,
        }
    except Exception as exc:
        log.error(f"❌ Failed processing inbound for lead {lead_id}: {exc}", exc_info=True)
        return {"status": "Failed", "lead_id": lead_id, "error": str(exc)}

# sdr/webhook.py
"""
📥 WhatsApp Cloud API webhook
-----------------------------
GET   /webhooks/whatsapp   subscription handshake (hub.challenge echo)
POST  /webhooks/whatsapp   inbound message → dedupe → lead lookup → buffer

POST always answers 200; failures are only logged.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import redis
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from sdr.buffer import get_buffer
from sdr.config import settings
from sdr.datastore import REPOSITORY
from sdr.runtime import get_logger

log = get_logger("webhook")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60


class IdempotencyStore:
    """Redis SET NX with a bounded in-process fallback, keyed by provider message id."""

    def __init__(self, client=None, max_mem_size: int = 10000):
        self.r = client
        if self.r is None and settings().REDIS_URL:
            try:
                self.r = redis.from_url(settings().REDIS_URL, decode_responses=True)
            except (redis.RedisError, ValueError) as exc:
                log.warning(f"⚠️ Redis unavailable for idempotency: {exc}")
        self._mem: Dict[str, None] = {}
        self._max_mem_size = max_mem_size

    def seen(self, msg_id: Optional[str]) -> bool:
        """True if this id was already processed; otherwise mark it and return False."""
        if not msg_id:
            return False
        key = f"wa:inbound:{msg_id}"

        if self.r is not None:
            try:
                ok = self.r.set(key, "1", nx=True, ex=IDEMPOTENCY_TTL_SECONDS)
                return not bool(ok)
            except redis.RedisError as exc:
                log.warning(f"⚠️ Redis idempotency check failed, using memory: {exc}")

        if key in self._mem:
            return True
        if len(self._mem) >= self._max_mem_size:
            # dicts keep insertion order: drop the oldest fifth
            for old_key in list(self._mem)[: self._max_mem_size // 5]:
                self._mem.pop(old_key, None)
        self._mem[key] = None
        return False


_IDEM: Optional[IdempotencyStore] = None


def get_idempotency_store() -> IdempotencyStore:
    global _IDEM
    if _IDEM is None:
        _IDEM = IdempotencyStore()
    return _IDEM


def reset_idempotency_store() -> None:
    global _IDEM
    _IDEM = None


def extract_message(payload: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """First message of the first change of the first entry, with the sender's phone."""
    try:
        value = payload["entry"][0]["changes"][0]["value"]
        message = value["messages"][0]
    except (KeyError, IndexError, TypeError):
        return None, None
    if not isinstance(message, dict):
        return None, None
    return message, message.get("from")


@router.get("/whatsapp")
async def verify_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    if hub_mode == "subscribe" and hub_verify_token == settings().WHATSAPP_VERIFY_TOKEN:
        log.info("✅ Webhook verified")
        return PlainTextResponse(hub_challenge or "", status_code=200)
    log.warning("🚫 Webhook verification failed")
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/whatsapp")
async def receive_webhook(request: Request):
    try:
        payload = await request.json()
        message, phone = extract_message(payload)
        if not message:
            return JSONResponse({"status": "ignored"}, status_code=200)

        if get_idempotency_store().seen(message.get("id")):
            log.info(f"🔁 Duplicate delivery {message.get('id')} ignored")
            return JSONResponse({"status": "duplicate"}, status_code=200)

        lead = REPOSITORY.find_lead_by_phone(phone or "")
        if lead is None:
            log.warning(f"🤷 No lead for phone {phone}; message dropped")
            return JSONResponse({"status": "unknown_lead"}, status_code=200)

        await get_buffer().add(lead.id, message)
        return JSONResponse({"status": "buffered", "lead_id": lead.id}, status_code=200)
    except Exception as exc:
        log.error(f"❌ Webhook processing error: {exc}", exc_info=True)
        return JSONResponse({"status": "error"}, status_code=200)

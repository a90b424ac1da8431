# sdr/whatsapp_sender.py
"""
📡 WhatsApp Sender: Cloud API transport
- POST /{PHONE_NUMBER_ID}/messages for text and template messages
- GET /{media_id} to resolve inbound media download URLs
- Failures raise WhatsAppError with the provider's status and body
- WHATSAPP_DRY_RUN logs payloads instead of calling the API
"""

from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from sdr.config import settings
from sdr.runtime import get_logger, normalize_phone

logger = get_logger("whatsapp_sender")

DRY_RUN = os.getenv("WHATSAPP_DRY_RUN", "0").lower() in ("1", "true", "yes")

# =========================
# Errors
# =========================


class WhatsAppError(RuntimeError):
    """Custom error that carries HTTP metadata and response body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.payload = payload

    def __str__(self) -> str:  # pragma: no cover - string formatting helper
        base = super().__str__()
        if self.body in (None, "", b""):
            return base
        body_repr = str(self.body).strip()
        if not body_repr or body_repr in base:
            return base
        return f"{base} | body={body_repr}"


# =========================
# Small helpers
# =========================
def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _extract_error_body(resp: Any) -> Any:
    """Parse JSON body if available; fallback to plain text."""
    if resp is None:
        return None
    try:
        return resp.json()
    except Exception:
        text = getattr(resp, "text", None)
        return text.strip() if text else None


def _summarize_error_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and _has_value(err.get("message")):
            return str(err["message"])
        for key in ("message", "error", "detail"):
            if _has_value(body.get(key)):
                return str(body[key])
    return str(body)


def _credentials() -> tuple[str, str]:
    s = settings()
    if not (s.WHATSAPP_ACCESS_TOKEN and s.WHATSAPP_PHONE_NUMBER_ID):
        raise WhatsAppError("WhatsApp credentials missing (WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID)")
    return s.WHATSAPP_ACCESS_TOKEN, s.WHATSAPP_PHONE_NUMBER_ID


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


def _raise_for_status(resp: httpx.Response, payload: Optional[Dict[str, Any]]) -> None:
    if resp.status_code == 429:
        raise WhatsAppError(
            f"429 rate limited; retry_after={resp.headers.get('Retry-After')}",
            status_code=429,
            body=resp.headers.get("Retry-After"),
            payload=payload,
        )
    if resp.is_error:
        body = _extract_error_body(resp)
        summary = _summarize_error_body(body)
        logger.error("WhatsApp %s error body: %s", resp.status_code, body)
        message = f"WhatsApp HTTP {resp.status_code}"
        if summary:
            message = f"{message}: {summary}"
        raise WhatsAppError(message, status_code=resp.status_code, body=body, payload=payload)


def _http_post(url: str, payload: Dict[str, Any], token: str) -> Dict[str, Any]:
    if DRY_RUN:
        logger.info("[DRY RUN] POST %s json=%s", url, payload)
        return {"messages": [{"id": f"wamid.dry_{int(time.time() * 1000)}"}]}
    try:
        resp = httpx.post(url, json=payload, headers=_auth_headers(token), timeout=settings().WHATSAPP_TIMEOUT_SEC)
    except httpx.HTTPError as exc:
        raise WhatsAppError(f"WhatsApp transport error: {exc}", payload=payload) from exc
    _raise_for_status(resp, payload)
    try:
        return resp.json()
    except Exception:
        return {"raw": resp.text}


def _message_id(resp: Dict[str, Any]) -> Optional[str]:
    messages = (resp or {}).get("messages") or []
    return messages[0].get("id") if messages and isinstance(messages[0], dict) else None


def _post_message(to: str, body: Dict[str, Any]) -> Dict[str, Any]:
    recipient = normalize_phone(to)
    if not recipient:
        raise ValueError(f'Recipient must be a phone number; got "{to}"')
    if DRY_RUN:
        token, phone_number_id = "dry-run", settings().WHATSAPP_PHONE_NUMBER_ID or "dry-run"
    else:
        token, phone_number_id = _credentials()
    payload = {"messaging_product": "whatsapp", "to": recipient, **body}
    url = f"{settings().WHATSAPP_API_URL}/{phone_number_id}/messages"
    resp = _http_post(url, payload, token)
    return {"status": "sent", "id": _message_id(resp), "raw": resp}


# =========================
# Core Senders
# =========================
def send_text(to: str, message: str) -> Dict[str, Any]:
    """Send one free-form text message. Returns {"status": "sent", "id": wamid, "raw": ...}."""
    body = (message or "").strip()
    if not body:
        raise ValueError("Body is empty")
    logger.info(f"📤 Sending WhatsApp → {to}: {body[:60]}...")
    return _post_message(to, {"type": "text", "text": {"body": body}})


def send_template(
    to: str,
    template_name: str,
    components: Optional[List[Dict[str, Any]]] = None,
    language: Optional[str] = None,
) -> Dict[str, Any]:
    """Send a pre-approved template (the only kind allowed outside the 24-hour window)."""
    if not template_name:
        raise ValueError("template_name is required")
    template = {
        "name": template_name,
        "language": {"code": language or settings().TEMPLATE_LANGUAGE},
        "components": list(components or []),
    }
    logger.info(f"📤 Sending template '{template_name}' → {to}")
    return _post_message(to, {"type": "template", "template": template})


def send_sequential(phone: str, segments: Sequence[str], delay_ms: Optional[int] = None) -> List[Dict[str, Any]]:
    """Send segments in order with a pause between them. The first failure propagates."""
    delay = (settings().SEND_DELAY_MS if delay_ms is None else delay_ms) / 1000.0
    results: List[Dict[str, Any]] = []
    parts = [s for s in segments if s and s.strip()]
    for i, segment in enumerate(parts):
        results.append(send_text(phone, segment))
        if delay > 0 and i < len(parts) - 1:
            time.sleep(delay)
    return results


# =========================
# Media
# =========================
def get_media_url(media_id: str) -> str:
    """Resolve the short-lived download URL for an inbound media id."""
    token, _ = _credentials()
    url = f"{settings().WHATSAPP_API_URL}/{media_id}"
    try:
        resp = httpx.get(url, headers={"Authorization": f"Bearer {token}"}, timeout=settings().WHATSAPP_TIMEOUT_SEC)
    except httpx.HTTPError as exc:
        raise WhatsAppError(f"WhatsApp transport error: {exc}") from exc
    _raise_for_status(resp, None)
    media_url = (resp.json() or {}).get("url")
    if not media_url:
        raise WhatsAppError(f"No download URL for media {media_id}", body=resp.text)
    return media_url


def download_media(media_url: str) -> bytes:
    token, _ = _credentials()
    try:
        resp = httpx.get(media_url, headers={"Authorization": f"Bearer {token}"}, timeout=settings().WHATSAPP_TIMEOUT_SEC)
    except httpx.HTTPError as exc:
        raise WhatsAppError(f"WhatsApp media download failed: {exc}") from exc
    _raise_for_status(resp, None)
    return resp.content

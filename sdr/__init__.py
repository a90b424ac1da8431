"""
🤖 SDR Conversation Engine
--------------------------
WhatsApp conversation lifecycle for multi-tenant SDR automation:
debounced inbound handling, AI-driven replies, nudge cadence,
morning reactivation, meeting reminders and campaign dispatch.
"""

from .config import settings

__all__ = ["settings"]

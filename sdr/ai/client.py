# sdr/ai/client.py
from __future__ import annotations

from openai import OpenAI

from sdr.config import settings


class AIDecisionError(RuntimeError):
    """Raised when the model cannot be reached or returns something unusable."""


def openai_client() -> OpenAI:
    s = settings()
    if not s.OPENAI_API_KEY:
        raise AIDecisionError("OPENAI_API_KEY is not configured")
    return OpenAI(api_key=s.OPENAI_API_KEY, timeout=s.OPENAI_TIMEOUT)

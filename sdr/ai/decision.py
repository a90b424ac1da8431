# sdr/ai/decision.py
"""
AI decision step: history + tenant prompt in, either text segments or one tool call out.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from sdr.ai.client import AIDecisionError, openai_client
from sdr.config import settings
from sdr.datastore import REPOSITORY
from sdr.runtime import get_logger
from sdr.tools import tool_schemas

logger = get_logger("ai.decision")

DEFAULT_SYSTEM_PROMPT = "Você é um assistente de vendas prestativo."

_SENTENCE_BREAK = re.compile(r"(?<=[.?!])\s+")


@dataclass(frozen=True)
class TextDecision:
    segments: List[str]
    type: str = "text"


@dataclass(frozen=True)
class ToolCallDecision:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None
    type: str = "tool_call"


Decision = Union[TextDecision, ToolCallDecision]


def segment_text(text: str) -> List[str]:
    """Split a reply into WhatsApp-sized bubbles at sentence boundaries."""
    content = (text or "").strip()
    parts = [p.strip() for p in _SENTENCE_BREAK.split(content) if p.strip()]
    return parts or ([content] if content else [])


def system_prompt_for(client_id: Optional[str]) -> str:
    return REPOSITORY.client_system_prompt(client_id) or DEFAULT_SYSTEM_PROMPT


def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments were not JSON: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def get_decision(history: List[Dict[str, str]], client_id: Optional[str]) -> Decision:
    """Ask the model what to do next for this conversation.

    Only the first tool call is honoured when the model returns several.
    """
    messages = [{"role": "system", "content": system_prompt_for(client_id)}, *history]
    try:
        resp = openai_client().chat.completions.create(
            model=settings().OPENAI_MODEL,
            messages=messages,
            tools=tool_schemas(),
            tool_choice="auto",
        )
    except AIDecisionError:
        raise
    except Exception as exc:
        raise AIDecisionError(f"Completion failed: {exc}") from exc

    if not resp or not resp.choices:
        raise AIDecisionError("Empty completion")
    message = resp.choices[0].message

    if message.tool_calls:
        call = message.tool_calls[0]
        return ToolCallDecision(
            name=call.function.name,
            arguments=_parse_arguments(call.function.arguments),
            call_id=call.id,
        )
    return TextDecision(segments=segment_text(message.content or ""))

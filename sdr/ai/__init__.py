from .decision import AIDecisionError, Decision, TextDecision, ToolCallDecision, get_decision, segment_text
from .media import describe_image, transcribe_audio

__all__ = [
    "AIDecisionError",
    "Decision",
    "TextDecision",
    "ToolCallDecision",
    "describe_image",
    "get_decision",
    "segment_text",
    "transcribe_audio",
]

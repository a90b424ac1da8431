# sdr/ai/media.py
"""Turn inbound voice notes and images into text the conversation model can read."""

from __future__ import annotations

import base64

from sdr.ai.client import AIDecisionError, openai_client
from sdr.config import settings
from sdr.runtime import get_logger
from sdr.whatsapp_sender import download_media

logger = get_logger("ai.media")

IMAGE_PROMPT = (
    "Descreva esta imagem em detalhes, focando em elementos relevantes para um contexto "
    "de conversa de vendas ou prospecção. Se houver texto na imagem, transcreva-o."
)


def _extension(mime_type: str) -> str:
    subtype = (mime_type or "audio/ogg").split("/")[-1]
    return subtype.split(";")[0].strip() or "ogg"


def transcribe_audio(media_url: str, mime_type: str = "audio/ogg") -> str:
    audio = download_media(media_url)
    filename = f"audio.{_extension(mime_type)}"
    try:
        result = openai_client().audio.transcriptions.create(
            model=settings().OPENAI_TRANSCRIBE_MODEL,
            file=(filename, audio, mime_type),
            language="pt",
        )
    except AIDecisionError:
        raise
    except Exception as exc:
        raise AIDecisionError(f"Transcription failed: {exc}") from exc
    text = (getattr(result, "text", "") or "").strip()
    logger.info("🎙 Transcribed %s bytes of audio (%s chars)", len(audio), len(text))
    return text


def describe_image(media_url: str, mime_type: str = "image/jpeg") -> str:
    image = download_media(media_url)
    data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
    try:
        resp = openai_client().chat.completions.create(
            model=settings().OPENAI_MODEL,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": IMAGE_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
            max_tokens=500,
        )
    except AIDecisionError:
        raise
    except Exception as exc:
        raise AIDecisionError(f"Image description failed: {exc}") from exc
    return (resp.choices[0].message.content or "").strip() if resp.choices else ""

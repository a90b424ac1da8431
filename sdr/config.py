from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# -----------------------------
# .env Loader
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except Exception:
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except Exception:
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if (v and str(v).strip() != "") else default


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    AIRTABLE_API_KEY: Optional[str]
    SDR_BASE: Optional[str]
    WHATSAPP_API_URL: str
    WHATSAPP_ACCESS_TOKEN: Optional[str]
    WHATSAPP_PHONE_NUMBER_ID: Optional[str]
    WHATSAPP_VERIFY_TOKEN: str
    WHATSAPP_TIMEOUT_SEC: float
    TEMPLATE_LANGUAGE: str
    DEFAULT_TEMPLATE: str
    OPENAI_API_KEY: Optional[str]
    OPENAI_MODEL: str
    OPENAI_TRANSCRIBE_MODEL: str
    OPENAI_TIMEOUT: float
    BUSINESS_TZ: str
    BUSINESS_START_HOUR: int
    BUSINESS_END_HOUR: int
    BUSINESS_HOURS_ENFORCED: bool
    REACTIVATION_CUTOFF_HOUR: int
    BUFFER_BACKEND: str
    BUFFER_WINDOW_SECONDS: float
    BUFFER_MERGE_BURSTS: bool
    SEND_DELAY_MS: int
    CAMPAIGN_PACE_SECONDS: float
    HISTORY_LIMIT: int
    JOB_MAX_RETRIES: int
    REDIS_URL: Optional[str]
    REDIS_TLS: bool
    CRON_TOKEN: Optional[str]


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings(
        AIRTABLE_API_KEY=env_str("AIRTABLE_API_KEY"),
        SDR_BASE=env_str("SDR_BASE") or env_str("AIRTABLE_SDR_BASE_ID"),
        WHATSAPP_API_URL=env_str("WHATSAPP_API_URL", "https://graph.facebook.com/v19.0"),
        WHATSAPP_ACCESS_TOKEN=env_str("WHATSAPP_ACCESS_TOKEN"),
        WHATSAPP_PHONE_NUMBER_ID=env_str("WHATSAPP_PHONE_NUMBER_ID"),
        WHATSAPP_VERIFY_TOKEN=env_str("WHATSAPP_VERIFY_TOKEN", "your_verify_token"),
        WHATSAPP_TIMEOUT_SEC=env_float("WHATSAPP_TIMEOUT_SEC", 15.0),
        TEMPLATE_LANGUAGE=env_str("TEMPLATE_LANGUAGE", "pt_BR"),
        DEFAULT_TEMPLATE=env_str("DEFAULT_TEMPLATE", "hello_world"),
        OPENAI_API_KEY=env_str("OPENAI_API_KEY"),
        OPENAI_MODEL=env_str("OPENAI_MODEL", "gpt-4o"),
        OPENAI_TRANSCRIBE_MODEL=env_str("OPENAI_TRANSCRIBE_MODEL", "whisper-1"),
        OPENAI_TIMEOUT=env_float("OPENAI_TIMEOUT", 30.0),
        BUSINESS_TZ=env_str("BUSINESS_TZ", "America/Sao_Paulo"),
        BUSINESS_START_HOUR=env_int("BUSINESS_START_HOUR", 8),
        BUSINESS_END_HOUR=env_int("BUSINESS_END_HOUR", 20),
        BUSINESS_HOURS_ENFORCED=env_bool("BUSINESS_HOURS_ENFORCED", True),
        REACTIVATION_CUTOFF_HOUR=env_int("REACTIVATION_CUTOFF_HOUR", 20),
        BUFFER_BACKEND=(env_str("BUFFER_BACKEND", "memory") or "memory").lower(),
        BUFFER_WINDOW_SECONDS=env_float("BUFFER_WINDOW_SECONDS", 25.0),
        BUFFER_MERGE_BURSTS=env_bool("BUFFER_MERGE_BURSTS", False),
        SEND_DELAY_MS=env_int("SEND_DELAY_MS", 1000),
        CAMPAIGN_PACE_SECONDS=env_float("CAMPAIGN_PACE_SECONDS", 1.0),
        HISTORY_LIMIT=env_int("HISTORY_LIMIT", 20),
        JOB_MAX_RETRIES=env_int("JOB_MAX_RETRIES", 3),
        REDIS_URL=env_str("REDIS_URL"),
        REDIS_TLS=env_bool("REDIS_TLS", False),
        CRON_TOKEN=env_str("CRON_TOKEN"),
    )


# -----------------------------
# Time helpers
# -----------------------------
def business_tz() -> ZoneInfo:
    return ZoneInfo(settings().BUSINESS_TZ)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tz_now() -> datetime:
    return datetime.now(business_tz())


def to_local(when: datetime) -> datetime:
    """Convert an aware datetime (naive is treated as UTC) to business time."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(business_tz())

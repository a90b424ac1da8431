"""
SDR Engine: FastAPI entrypoint
- WhatsApp webhook (verification + inbound)
- Cron-token guarded job triggers
- Debounce buffer created at startup, flushed and closed at shutdown
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI

# ───────────────────────────── Load .env early ─────────────────────────────
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)

from sdr.buffer import get_buffer, shutdown_buffer  # noqa: E402
from sdr.cadence import in_business_hours  # noqa: E402
from sdr.config import settings, tz_now  # noqa: E402
from sdr.jobs import JOBS, router as jobs_router  # noqa: E402
from sdr.runtime import configure_logging, get_logger, install_global_exception_hook, log_core_env  # noqa: E402
from sdr.webhook import router as webhook_router  # noqa: E402

configure_logging()
install_global_exception_hook()
log = get_logger("main")

app = FastAPI(title="SDR Engine", version="1.0.0")
app.include_router(webhook_router)
app.include_router(jobs_router)


def _iso_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


# ─────────────────────────── Lifecycle ─────────────────────────
@app.on_event("startup")
async def startup():
    log_core_env()
    missing = [k for k in ("WHATSAPP_ACCESS_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "OPENAI_API_KEY") if not os.getenv(k)]
    if missing:
        log.warning(f"🚨 Missing env vars → {', '.join(missing)}")
    get_buffer()
    log.info("✅ SDR engine started")


@app.on_event("shutdown")
async def shutdown():
    await shutdown_buffer()
    log.info("👋 SDR engine stopped")


# ─────────────────────────── Health ────────────────────────────────
@app.get("/ping")
async def ping():
    return {"ok": True, "pong": True, "time": _iso_ts()}


@app.get("/health")
async def health():
    return {
        "ok": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "business_hours": in_business_hours(),
        "local_time": tz_now().isoformat(),
        "buffer_backend": settings().BUFFER_BACKEND,
        "jobs": sorted(JOBS),
        "version": app.version,
    }

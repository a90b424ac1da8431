# sdr/buffer.py
"""
⏳ Message Debounce Buffer
--------------------------
Leads type in bursts. Each inbound message re-arms a per-lead countdown
(25 s by default); only when the lead goes quiet for the whole window are
the buffered messages handed, in arrival order, to the conversation
dispatcher.

Backends:
  InMemoryMessageBuffer  timers on the running asyncio loop (single process)
  RedisMessageBuffer     per-lead list + deadline sorted set, polled
                         (survives restarts, shared across workers)
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import redis

from sdr.config import settings
from sdr.conversation import handle_inbound_message
from sdr.runtime import get_logger

log = get_logger("buffer")

FlushHandler = Callable[[str, Dict[str, Any]], Any]


def merge_text_burst(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse each run of consecutive text messages into one text message."""
    merged: List[Dict[str, Any]] = []
    for message in messages:
        if message.get("type") == "text" and merged and merged[-1].get("type") == "text":
            prev = merged[-1]
            body = f"{prev['text']['body']}\n{(message.get('text') or {}).get('body', '')}"
            merged[-1] = {**message, "text": {"body": body}}
        elif message.get("type") == "text":
            merged.append({**message, "text": {"body": (message.get("text") or {}).get("body", "")}})
        else:
            merged.append(message)
    return merged


class MessageBuffer:
    """Common hand-off logic. Subclasses decide where pending messages live."""

    def __init__(
        self,
        handler: Optional[FlushHandler] = None,
        window_seconds: Optional[float] = None,
        merge_bursts: Optional[bool] = None,
    ) -> None:
        s = settings()
        self.handler = handler or handle_inbound_message
        self.window = s.BUFFER_WINDOW_SECONDS if window_seconds is None else window_seconds
        self.merge_bursts = s.BUFFER_MERGE_BURSTS if merge_bursts is None else merge_bursts

    async def add(self, lead_id: str, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    def pending(self, lead_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def _hand_off(self, lead_id: str, messages: List[Dict[str, Any]]) -> int:
        batch = merge_text_burst(messages) if self.merge_bursts else messages
        log.info(f"🚚 Flushing {len(messages)} message(s) for lead {lead_id} ({len(batch)} hand-off(s))")
        handled = 0
        for message in batch:
            try:
                await asyncio.to_thread(self.handler, lead_id, message)
                handled += 1
            except Exception as exc:
                log.error(f"❌ Flush handler failed for lead {lead_id}: {exc}", exc_info=True)
        return handled


# ============================================================
# IN-MEMORY
# ============================================================


@dataclass
class _Entry:
    messages: List[Dict[str, Any]] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


class InMemoryMessageBuffer(MessageBuffer):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._entries: Dict[str, _Entry] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def add(self, lead_id: str, message: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        entry = self._entries.setdefault(lead_id, _Entry())
        if entry.timer is not None:
            entry.timer.cancel()
        entry.messages.append(message)
        entry.timer = loop.call_later(self.window, self._expire, lead_id)
        log.debug(f"⏳ Buffered message {len(entry.messages)} for lead {lead_id}")

    def _expire(self, lead_id: str) -> None:
        task = asyncio.ensure_future(self.flush(lead_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self, lead_id: str) -> int:
        # Pop first: a message arriving mid-flush opens a fresh window.
        entry = self._entries.pop(lead_id, None)
        if entry is None:
            return 0
        if entry.timer is not None:
            entry.timer.cancel()
        try:
            return await self._hand_off(lead_id, entry.messages)
        finally:
            entry.messages.clear()

    def pending(self, lead_id: str) -> List[Dict[str, Any]]:
        entry = self._entries.get(lead_id)
        return list(entry.messages) if entry else []

    async def drain(self) -> None:
        """Wait for flushes already in progress."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Flush everything still waiting, then stop."""
        for lead_id in list(self._entries):
            await self.flush(lead_id)
        await self.drain()


# ============================================================
# REDIS
# ============================================================


class RedisMessageBuffer(MessageBuffer):
    LIST_PREFIX = "sdr:buffer:"
    DEADLINES = "sdr:buffer:deadlines"

    def __init__(self, client, *args, poll_interval: float = 1.0, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.r = client
        self.poll_interval = poll_interval
        self._poller: Optional[asyncio.Task] = None
        self._closed = False

    def _key(self, lead_id: str) -> str:
        return f"{self.LIST_PREFIX}{lead_id}"

    async def add(self, lead_id: str, message: Dict[str, Any]) -> None:
        key = self._key(lead_id)
        self.r.rpush(key, json.dumps(message, ensure_ascii=False))
        self.r.expire(key, int(self.window * 4) + 60)
        self.r.zadd(self.DEADLINES, {lead_id: time.time() + self.window})
        self._ensure_poller()

    def _ensure_poller(self) -> None:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.get_running_loop().create_task(self._poll_loop())

    def pending(self, lead_id: str) -> List[Dict[str, Any]]:
        return [json.loads(raw) for raw in self.r.lrange(self._key(lead_id), 0, -1)]

    def collect_due(self, now: Optional[float] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Claim every lead whose window has expired.

        zrem picks the owning worker; the list is read and cleared in one MULTI.
        """
        now = time.time() if now is None else now
        claimed: Dict[str, List[Dict[str, Any]]] = {}
        for lead_id in self.r.zrangebyscore(self.DEADLINES, 0, now):
            if not self.r.zrem(self.DEADLINES, lead_id):
                continue
            pipe = self.r.pipeline(transaction=True)
            pipe.lrange(self._key(lead_id), 0, -1)
            pipe.delete(self._key(lead_id))
            raw, _ = pipe.execute()
            messages = [json.loads(item) for item in raw]
            if messages:
                claimed[lead_id] = messages
        return claimed

    async def flush_due(self, now: Optional[float] = None) -> int:
        due = await asyncio.to_thread(self.collect_due, now)
        for lead_id, messages in due.items():
            await self._hand_off(lead_id, messages)
        return len(due)

    async def _poll_loop(self) -> None:
        while not self._closed:
            try:
                await self.flush_due()
            except redis.RedisError as exc:
                log.warning(f"⚠️ Redis buffer poll failed: {exc}")
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        self._closed = True
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
        self._poller = None


# ============================================================
# PROCESS-WIDE INSTANCE
# ============================================================

_BUFFER: Optional[MessageBuffer] = None


def _redis_client():
    s = settings()
    url = s.REDIS_URL
    if s.REDIS_TLS and url.startswith("redis://"):
        url = "rediss://" + url[len("redis://"):]
    return redis.from_url(url, decode_responses=True)


def get_buffer() -> MessageBuffer:
    global _BUFFER
    if _BUFFER is None:
        s = settings()
        if s.BUFFER_BACKEND == "redis" and s.REDIS_URL:
            _BUFFER = RedisMessageBuffer(_redis_client())
            log.info("🧰 Debounce buffer: redis")
        else:
            _BUFFER = InMemoryMessageBuffer()
            log.info(f"🧰 Debounce buffer: memory ({_BUFFER.window:.0f}s window)")
    return _BUFFER


async def shutdown_buffer() -> None:
    global _BUFFER
    if _BUFFER is not None:
        await _BUFFER.close()
    _BUFFER = None


def reset_buffer() -> None:
    global _BUFFER
    if isinstance(_BUFFER, InMemoryMessageBuffer):
        for entry in _BUFFER._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
    _BUFFER = None

"""
⏱ Nudge Cadence
---------------
Silence thresholds for automated re-engagement plus the business-hours
and reactivation windows the scanners run inside of.

Nothing here is stored: a lead's position in the cadence is derived from
``nudge_sequence_step`` and ``last_outgoing_message_at`` at scan time.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from sdr.config import settings, to_local, utcnow

# 10, 10, 20, 20, 30, 30 minutes, then hourly
NUDGE_INTERVALS_MINUTES: List[int] = [10, 10, 20, 20, 30, 30]
FLAT_INTERVAL_MINUTES = 60


def interval_for_nudge(n: int) -> int:
    """Minutes of silence required before nudge ``n`` (1-indexed)."""
    if n < 1:
        raise ValueError(f"nudge number must be >= 1, got {n}")
    if n <= len(NUDGE_INTERVALS_MINUTES):
        return NUDGE_INTERVALS_MINUTES[n - 1]
    return FLAT_INTERVAL_MINUTES


def cumulative_minutes(n: int) -> int:
    """Total silence since the first unanswered outbound at which nudge ``n`` fires."""
    return sum(interval_for_nudge(i) for i in range(1, n + 1))


def is_due(step: int, minutes_since_last_outgoing: float) -> bool:
    """True when a lead at ``step`` has waited long enough for nudge ``step + 1``."""
    if step < 0:
        return False
    return minutes_since_last_outgoing >= interval_for_nudge(step + 1)


def in_business_hours(when: Optional[datetime] = None) -> bool:
    s = settings()
    if not s.BUSINESS_HOURS_ENFORCED:
        return True
    local = to_local(when or utcnow())
    return s.BUSINESS_START_HOUR <= local.hour < s.BUSINESS_END_HOUR


def reactivation_cutoff(now: Optional[datetime] = None) -> datetime:
    """Cutoff hour (20:00 by default) of the previous local day."""
    local = to_local(now or utcnow())
    yesterday = local - timedelta(days=1)
    return yesterday.replace(hour=settings().REACTIVATION_CUTOFF_HOUR, minute=0, second=0, microsecond=0)

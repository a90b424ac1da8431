# sdr/reminders.py
"""
⏰ Meeting reminders
--------------------
scan_meeting_reminders      every 10 min; in-app notifications for meetings
                            later today (reuniao_hoje) and inside the next
                            hour (lembrete_1h)
reset_daily_reminder_flags  00:01; clears both per-lead flags
"""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from sdr.airtable_schema import ReminderType
from sdr.config import to_local
from sdr.datastore import REPOSITORY, MeetingReminder
from sdr.runtime import get_logger, utc_now

log = get_logger("reminders")

FLAG_FOR_TYPE = {
    ReminderType.MEETING_TODAY: "DAILY_REMINDER_SENT",
    ReminderType.ONE_HOUR: "MEETING_REMINDER_SENT",
}


def reminder_text(reminder: MeetingReminder) -> str:
    hhmm = to_local(reminder.scheduled_at).strftime("%H:%M")
    if reminder.reminder_type == ReminderType.ONE_HOUR:
        return f"⏰ LEMBRETE: Reunião com {reminder.lead_name} em 1 hora! ({hhmm})"
    return f"📅 Reunião hoje com {reminder.lead_name} às {hhmm}"


def _recipients(reminder: MeetingReminder) -> List[str]:
    users = [u for u in (reminder.client_id, reminder.consultant_id) if u]
    return list(dict.fromkeys(users))


def _remind_one(reminder: MeetingReminder) -> Dict[str, Any]:
    flag = FLAG_FOR_TYPE[reminder.reminder_type]
    if not REPOSITORY.update_lead_if(reminder.lead_id, {flag: False}, {flag: True}):
        return {"lead_id": reminder.lead_id, "type": reminder.reminder_type.value, "status": "skipped"}

    message = reminder_text(reminder)
    recipients = _recipients(reminder)
    for user_id in recipients:
        REPOSITORY.insert_notification(
            user_id=user_id,
            message=message,
            type_=reminder.reminder_type.value,
            related_lead_id=reminder.lead_id,
        )
    log.info(f"{message} → {len(recipients)} recipient(s)")
    return {"lead_id": reminder.lead_id, "type": reminder.reminder_type.value, "status": "sent", "notified": len(recipients)}


def scan_meeting_reminders(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    try:
        reminders = REPOSITORY.meetings_needing_reminder(now)
    except Exception as exc:
        log.error(f"❌ Could not fetch meetings: {exc}", exc_info=True)
        return {"status": "Failed", "error": str(exc)}

    counts: Dict[str, int] = defaultdict(int)
    results: List[Dict[str, Any]] = []
    for reminder in reminders:
        try:
            result = _remind_one(reminder)
        except Exception as exc:
            log.error(f"❌ Reminder failed for lead {reminder.lead_id}: {exc}", exc_info=True)
            result = {"lead_id": reminder.lead_id, "type": reminder.reminder_type.value, "status": "failed", "error": str(exc)}
        counts[result["status"]] += 1
        results.append(result)

    return {"status": "Meeting reminders scan completed", "processed": len(reminders), **counts, "results": results}


def reset_daily_reminder_flags() -> Dict[str, Any]:
    try:
        cleared = REPOSITORY.reset_daily_reminder_flags()
    except Exception as exc:
        log.error(f"❌ Reminder flag reset failed: {exc}", exc_info=True)
        return {"status": "Failed", "error": str(exc)}
    log.info(f"🧹 Cleared reminder flags on {cleared} lead(s)")
    return {"status": "Daily reminder flags reset successfully", "processed": cleared}


if __name__ == "__main__":
    print(json.dumps(scan_meeting_reminders(), indent=2, default=str))

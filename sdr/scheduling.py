# sdr/scheduling.py
"""
📅 Meeting slot proposal
------------------------
Round-robin over active consultants (least recently booked first) and
offer the lead two free one-hour slots on business days in the next two
weeks. Calendar access is a pluggable busy-slot provider; the default
treats every consultant as free.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from sdr.config import settings, to_local, utcnow
from sdr.datastore import REPOSITORY, Consultant, Lead
from sdr.runtime import get_logger

log = get_logger("scheduling")

SEARCH_DAYS = 14
SLOTS_TO_PROPOSE = 2
SLOT_DURATION = timedelta(hours=1)
PREFERRED_HOURS = (10, 15, 9, 11, 14, 16, 17)

WEEKDAYS_PT = (
    "Segunda-feira",
    "Terça-feira",
    "Quarta-feira",
    "Quinta-feira",
    "Sexta-feira",
    "Sábado",
    "Domingo",
)

FALLBACK_MESSAGE = (
    "Nossos especialistas estão com a agenda bem cheia nas próximas semanas! "
    "Mas não se preocupe, já notifiquei nossa equipe e entraremos em contato "
    "assim que surgir um encaixe. 👍"
)

BusySlot = Tuple[datetime, datetime]
BusySlotProvider = Callable[[Consultant, datetime, datetime], Sequence[BusySlot]]


class NoConsultantAvailableError(RuntimeError):
    pass


@dataclass
class MeetingProposal:
    message: str
    consultant_id: Optional[str]
    slots: List[datetime] = field(default_factory=list)


def no_busy_slots(consultant: Consultant, start: datetime, end: datetime) -> Sequence[BusySlot]:
    return []


_busy_slot_provider: BusySlotProvider = no_busy_slots


def set_busy_slot_provider(provider: Optional[BusySlotProvider]) -> None:
    global _busy_slot_provider
    _busy_slot_provider = provider or no_busy_slots


def _overlaps(start: datetime, end: datetime, busy: Sequence[BusySlot]) -> bool:
    return any(start < b_end and b_start < end for b_start, b_end in busy)


def find_free_slots(
    busy: Sequence[BusySlot],
    now: Optional[datetime] = None,
    *,
    count: int = SLOTS_TO_PROPOSE,
    days: int = SEARCH_DAYS,
) -> List[datetime]:
    """At most one free slot per business day, starting tomorrow, until ``count`` are found."""
    s = settings()
    local_now = to_local(now or utcnow())
    hours = [h for h in PREFERRED_HOURS if s.BUSINESS_START_HOUR <= h < s.BUSINESS_END_HOUR]
    found: List[datetime] = []
    for offset in range(1, days + 1):
        day = (local_now + timedelta(days=offset)).replace(minute=0, second=0, microsecond=0)
        if day.weekday() >= 5:
            continue
        for hour in hours:
            start = day.replace(hour=hour)
            if not _overlaps(start, start + SLOT_DURATION, busy):
                found.append(start)
                break
        if len(found) >= count:
            break
    return found


def format_slot(slot: datetime) -> str:
    local = to_local(slot)
    return f"{WEEKDAYS_PT[local.weekday()]} ({local:%d/%m}) às {local:%H:%M}"


def proposal_message(consultant_name: str, slots: Sequence[datetime]) -> str:
    options = "\n- ".join(format_slot(s) for s in slots)
    return (
        f"Ótimo! Para te ajudar, o consultor {consultant_name} tem alguns horários. "
        f"Qual destes fica melhor para você?\n\n- {options}\n\n(Horário de Brasília)"
    )


def propose_meeting_times(lead: Lead, now: Optional[datetime] = None) -> MeetingProposal:
    consultants = REPOSITORY.active_consultants(lead.client_id)
    if not consultants:
        raise NoConsultantAvailableError("Nenhum consultor ativo e disponível encontrado.")

    now = now or utcnow()
    window_end = now + timedelta(days=SEARCH_DAYS + 1)
    for consultant in consultants:
        busy = _busy_slot_provider(consultant, now, window_end)
        slots = find_free_slots(busy, now)
        if slots:
            log.info(f"📅 Proposing {len(slots)} slots with {consultant.name} for lead {lead.id}")
            return MeetingProposal(proposal_message(consultant.name, slots), consultant.id, slots)

    log.warning(f"⚠️ No free slots for any consultant (lead {lead.id})")
    return MeetingProposal(FALLBACK_MESSAGE, None)

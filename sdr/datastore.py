"""Schema-aware Airtable datastore with an in-memory fallback for tests and local runs."""

from __future__ import annotations

import itertools
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests
from pyairtable import Api

from sdr.airtable_schema import (
    CAMPAIGNS_TABLE,
    CLIENT_SETTINGS_TABLE,
    CONSULTANTS_TABLE,
    JOB_RUNS_TABLE,
    LEADS_TABLE,
    MESSAGES_TABLE,
    NOTIFICATIONS_TABLE,
    AIStatus,
    LeadStatus,
    MessageDirection,
    MessageRole,
    ReminderType,
    campaign_field_map,
    client_settings_field_map,
    consultants_field_map,
    leads_field_map,
    messages_field_map,
    notifications_field_map,
)
from sdr.cadence import is_due
from sdr.config import settings, to_local
from sdr.runtime import get_logger, iso_now, minutes_between, normalize_phone, parse_iso, retry, to_iso, utc_now

logger = get_logger(__name__)
DEBUG = os.getenv("DEBUG", "").lower() in {"1", "true", "yes"}

LEAD_FIELDS = leads_field_map()
MESSAGE_FIELDS = messages_field_map()
NOTIFICATION_FIELDS = notifications_field_map()
CAMPAIGN_FIELDS = campaign_field_map()
CONSULTANT_FIELDS = consultants_field_map()
SETTINGS_FIELDS = client_settings_field_map()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InMemoryTable:
    """Minimal Airtable drop-in replacement used for local tests."""

    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, Dict[str, Any]] = {}
        self._sequence = itertools.count(1)

    def create(self, fields: Dict[str, Any]):
        record_id = f"rec_{next(self._sequence)}"
        record = {"id": record_id, "fields": dict(fields)}
        self._records[record_id] = record
        return record

    def update(self, record_id: str, fields: Dict[str, Any]):
        if record_id not in self._records:
            raise KeyError(f"Unknown record id {record_id} in {self.name}")
        self._records[record_id]["fields"].update(fields)
        return self._records[record_id]

    def batch_update(self, records: Iterable[Dict[str, Any]]):
        return [self.update(rec["id"], rec["fields"]) for rec in records]

    def get(self, record_id: str):
        return self._records.get(record_id)

    def all(self, **kwargs):
        records = list(self._records.values())
        formula = kwargs.get("formula")
        max_records = kwargs.get("max_records")
        if formula:
            records = [rec for rec in records if _formula_match(rec, formula)]
        if max_records is not None:
            records = records[: int(max_records)]
        return records


class _Formula:
    """Parser for the Airtable formula subset this module builds.

    Supports ``AND(...)``, ``OR(...)``, ``NOT(...)``, bare ``{field}`` (non-blank)
    and ``{field}='value'`` (blank fields compare as ``''``).
    """

    _FUNCTIONS = ("AND(", "OR(", "NOT(")

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _skip_space(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _peek(self, token: str) -> bool:
        self._skip_space()
        return self.text.startswith(token, self.pos)

    def _expect(self, token: str) -> None:
        if not self._peek(token):
            raise ValueError(f"Unsupported formula near {self.text[self.pos:]!r}")
        self.pos += len(token)

    def parse(self) -> Tuple:
        node = self._expr()
        self._skip_space()
        if self.pos != len(self.text):
            raise ValueError(f"Unsupported formula near {self.text[self.pos:]!r}")
        return node

    def _expr(self) -> Tuple:
        for fn in self._FUNCTIONS:
            if self._peek(fn):
                self.pos += len(fn)
                args = [self._expr()]
                while self._peek(","):
                    self.pos += 1
                    args.append(self._expr())
                self._expect(")")
                return (fn[:-1], args)
        self._expect("{")
        end = self.text.index("}", self.pos)
        name = self.text[self.pos:end]
        self.pos = end + 1
        if self._peek("="):
            self.pos += 1
            return ("EQ", name, self._string())
        return ("FIELD", name)

    def _string(self) -> str:
        self._expect("'")
        out: List[str] = []
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                out.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            self.pos += 1
            if ch == "'":
                return "".join(out)
            out.append(ch)
        raise ValueError(f"Unterminated string in formula {self.text!r}")


def _evaluate(node: Tuple, fields: Dict[str, Any]) -> bool:
    kind = node[0]
    if kind == "AND":
        return all(_evaluate(arg, fields) for arg in node[1])
    if kind == "OR":
        return any(_evaluate(arg, fields) for arg in node[1])
    if kind == "NOT":
        return not _evaluate(node[1][0], fields)
    value = fields.get(node[1])
    if kind == "FIELD":
        return value not in (None, "", False, 0) and value != []
    return ("" if value is None else str(value)) == node[2]


def _formula_match(record: Dict[str, Any], formula: str) -> bool:
    return _evaluate(_Formula(formula).parse(), record.get("fields", {}) or {})


def _escape(value: Any) -> str:
    return str(value).replace("'", "\\'")


def eq_formula(**pairs: Any) -> str:
    """Build an Airtable ``{field}='value'`` formula, AND-ed when more than one."""
    clauses = [f"{{{name}}}='{_escape(value)}'" for name, value in pairs.items()]
    return clauses[0] if len(clauses) == 1 else f"AND({','.join(clauses)})"


def _lead_ref(key: str) -> str:
    return "{" + LEAD_FIELDS[key] + "}"


def awaiting_outreach_formula() -> str:
    """Unpaused leads with a phone and at least one outbound on record."""
    return (
        f"AND(NOT({_lead_ref('AI_STATUS')}='{AIStatus.PAUSED.value}'),"
        f"{_lead_ref('PHONE')},{_lead_ref('LAST_OUTGOING_AT')})"
    )


def _first_non_empty(*names: str) -> Optional[str]:
    for name in names:
        v = os.getenv(name)
        if v:
            return v
    return None


@dataclass
class TableHandle:
    table: Any
    in_memory: bool
    base_id: Optional[str]
    table_name: str
    last_error: Optional[Dict[str, Any]] = None


# ============================================================
# CONNECTOR
# ============================================================


class DataConnector:
    """Lazy pyairtable connector with in-memory fallback."""

    def __init__(self) -> None:
        self._tables: Dict[Tuple[str, str], TableHandle] = {}
        self._api: Optional[Api] = None

    def _table(self, base: Optional[str], table_name: str) -> TableHandle:
        key = (base or "memory", table_name)
        if key in self._tables:
            return self._tables[key]

        if os.getenv("SDR_FORCE_IN_MEMORY", "").lower() in {"1", "true", "yes"}:
            handle = TableHandle(InMemoryTable(table_name), True, base, table_name)
            self._tables[key] = handle
            return handle

        api_key = _first_non_empty("AIRTABLE_API_KEY", "AIRTABLE_SDR_KEY")
        if base and api_key:
            try:
                if self._api is None:
                    self._api = Api(api_key)
                handle = TableHandle(self._api.table(base, table_name), False, base, table_name)
                self._tables[key] = handle
                return handle
            except Exception:
                logger.warning("Falling back to in-memory table for %s", table_name, exc_info=True)

        logger.warning("⚠️ Airtable not configured; using in-memory table for %s", table_name)
        handle = TableHandle(InMemoryTable(table_name), True, base, table_name)
        self._tables[key] = handle
        return handle

    def _base(self) -> Optional[str]:
        return _first_non_empty("SDR_BASE", "AIRTABLE_SDR_BASE_ID")

    def leads(self) -> TableHandle:
        return self._table(self._base(), LEADS_TABLE.name())

    def messages(self) -> TableHandle:
        return self._table(self._base(), MESSAGES_TABLE.name())

    def notifications(self) -> TableHandle:
        return self._table(self._base(), NOTIFICATIONS_TABLE.name())

    def campaigns(self) -> TableHandle:
        return self._table(self._base(), CAMPAIGNS_TABLE.name())

    def consultants(self) -> TableHandle:
        return self._table(self._base(), CONSULTANTS_TABLE.name())

    def client_settings(self) -> TableHandle:
        return self._table(self._base(), CLIENT_SETTINGS_TABLE.name())

    def job_runs(self) -> TableHandle:
        return self._table(self._base(), JOB_RUNS_TABLE.name())


CONNECTOR = DataConnector()


# ============================================================
# LOW LEVEL HELPERS
# ============================================================


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in (payload or {}).items() if v is not None and v != ""}


def _log_airtable_exception(handle: TableHandle, exc: Exception, action: str) -> None:
    payload = {"action": action, "error": str(exc), "timestamp": iso_now()}
    response = getattr(exc, "response", None)
    if DEBUG and response is not None:
        status = getattr(response, "status_code", "unknown")
        payload.update({"status": status, "body": getattr(response, "text", repr(response))})
        logger.error("Airtable %s failed [%s] status=%s body=%s", action, handle.table_name, status, payload["body"])
    else:
        logger.error("Airtable %s failed [%s]: %s", action, handle.table_name, exc)
    handle.last_error = payload


# ============================================================
# SAFE WRAPPERS
# ============================================================


def _safe_all(handle: TableHandle, *, strict: bool = False, **kwargs) -> List[Dict[str, Any]]:
    """List records, retrying connection resets and 429s.

    Pages through every row unless ``max_records`` is given. With ``strict`` a
    final failure is raised instead of collapsing to ``[]``.
    """
    if kwargs.get("max_records") is None:
        kwargs.pop("max_records", None)
    if not handle.in_memory and "page_size" not in kwargs:
        kwargs["page_size"] = 100
    last_exc: Optional[Exception] = None
    for attempt in range(3):
        try:
            return list(handle.table.all(**kwargs))
        except (requests.exceptions.ConnectionError, ConnectionResetError) as exc:
            last_exc = exc
            logger.warning("Airtable connection reset [%s] retry %s: %s", handle.table_name, attempt + 1, exc)
            time.sleep((2**attempt) * 0.5)
            continue
        except Exception as exc:
            last_exc = exc
            _log_airtable_exception(handle, exc, "all")
            if "429" in str(exc) and attempt < 2:
                time.sleep((2**attempt) * 0.5)
                continue
            break
    if strict and last_exc is not None:
        raise last_exc
    return []


def _safe_get(handle: TableHandle, record_id: str):
    if not record_id:
        return None
    try:
        return handle.table.get(record_id)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "get")
        return None


def _safe_create(handle: TableHandle, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    body = _compact(fields)
    if not body:
        return None
    if handle.in_memory:
        return handle.table.create(body)
    try:
        return retry(lambda: handle.table.create(body), retries=3, base_delay=0.6, logger=logger)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "create")
        raise


def _safe_update(handle: TableHandle, record_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not record_id or not fields:
        return None
    if handle.in_memory:
        return handle.table.update(record_id, fields)
    try:
        return retry(lambda: handle.table.update(record_id, fields), retries=3, base_delay=0.6, logger=logger)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "update")
        raise


# ============================================================
# ROW TYPES
# ============================================================


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Lead:
    id: str
    client_id: Optional[str]
    phone: Optional[str]
    name: Optional[str] = None
    status: Optional[str] = None
    ai_status: str = AIStatus.ACTIVE.value
    campaign_id: Optional[str] = None
    consultant_id: Optional[str] = None
    last_incoming_message_at: Optional[datetime] = None
    last_outgoing_message_at: Optional[datetime] = None
    nudge_sequence_step: int = 0
    scheduled_at: Optional[datetime] = None
    daily_reminder_sent: bool = False
    meeting_reminder_sent: bool = False

    @property
    def is_paused(self) -> bool:
        return self.ai_status == AIStatus.PAUSED.value

    @property
    def awaiting_reply(self) -> bool:
        """Last outbound has not been answered yet."""
        if self.last_outgoing_message_at is None:
            return False
        return self.last_incoming_message_at is None or self.last_incoming_message_at < self.last_outgoing_message_at

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Lead":
        f = record.get("fields", {}) or {}
        return cls(
            id=record["id"],
            client_id=f.get(LEAD_FIELDS["CLIENT_ID"]),
            phone=f.get(LEAD_FIELDS["PHONE"]),
            name=f.get(LEAD_FIELDS["NAME"]),
            status=f.get(LEAD_FIELDS["STATUS"]),
            ai_status=f.get(LEAD_FIELDS["AI_STATUS"]) or AIStatus.ACTIVE.value,
            campaign_id=f.get(LEAD_FIELDS["CAMPAIGN_ID"]),
            consultant_id=f.get(LEAD_FIELDS["CONSULTANT_ID"]),
            last_incoming_message_at=parse_iso(f.get(LEAD_FIELDS["LAST_INCOMING_AT"])),
            last_outgoing_message_at=parse_iso(f.get(LEAD_FIELDS["LAST_OUTGOING_AT"])),
            nudge_sequence_step=_as_int(f.get(LEAD_FIELDS["NUDGE_STEP"])),
            scheduled_at=parse_iso(f.get(LEAD_FIELDS["SCHEDULED_AT"])),
            daily_reminder_sent=_as_bool(f.get(LEAD_FIELDS["DAILY_REMINDER_SENT"])),
            meeting_reminder_sent=_as_bool(f.get(LEAD_FIELDS["MEETING_REMINDER_SENT"])),
        )


@dataclass
class NudgeCandidate:
    lead_id: str
    client_id: Optional[str]
    phone: str
    minutes_since_last_message: float
    nudge_step: int
    last_outgoing_message_at: datetime


@dataclass
class MeetingReminder:
    lead_id: str
    lead_name: str
    client_id: Optional[str]
    consultant_id: Optional[str]
    scheduled_at: datetime
    reminder_type: ReminderType


@dataclass
class Consultant:
    id: str
    name: str
    client_id: Optional[str] = None
    last_meeting_scheduled_at: Optional[datetime] = None


def lead_fields(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Translate logical Lead keys (``"STATUS"``) into live Airtable field names."""
    out: Dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            value = to_iso(value)
        out[LEAD_FIELDS[key]] = value
    return out


def _same_value(current: Any, expected: Any) -> bool:
    if isinstance(expected, datetime) or isinstance(current, datetime):
        a, b = parse_iso(current), parse_iso(expected)
        if a is None or b is None:
            return a is b
        # compare at whole seconds; Airtable may round sub-second parts
        return a.replace(microsecond=0) == b.replace(microsecond=0)
    if isinstance(expected, bool):
        return _as_bool(current) == expected
    if isinstance(expected, int):
        return _as_int(current) == expected
    return (current or None) == (expected or None)


# ============================================================
# REPOSITORY
# ============================================================


class Repository:
    def __init__(self) -> None:
        self._lead_phone_index: Dict[str, str] = {}

    # Leads
    def get_lead(self, lead_id: str) -> Optional[Lead]:
        record = _safe_get(CONNECTOR.leads(), lead_id)
        return Lead.from_record(record) if record else None

    def _refresh_lead_index(self) -> None:
        for r in _safe_all(CONNECTOR.leads(), formula=_lead_ref("PHONE")):
            phone = normalize_phone((r.get("fields", {}) or {}).get(LEAD_FIELDS["PHONE"]))
            if phone:
                self._lead_phone_index[phone] = r["id"]

    def find_lead_by_phone(self, phone: str) -> Optional[Lead]:
        digits = normalize_phone(phone)
        if not digits:
            return None
        rid = self._lead_phone_index.get(digits)
        if rid:
            lead = self.get_lead(rid)
            if lead:
                return lead
        self._refresh_lead_index()
        rid = self._lead_phone_index.get(digits)
        return self.get_lead(rid) if rid else None

    def update_lead(self, lead_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = lead_fields(changes)
        payload.setdefault(LEAD_FIELDS["UPDATED_AT"], iso_now())
        return _safe_update(CONNECTOR.leads(), lead_id, payload)

    def update_lead_if(self, lead_id: str, expected: Dict[str, Any], changes: Dict[str, Any]) -> bool:
        """Apply ``changes`` only while the row still holds ``expected`` values.

        Airtable has no conditional write, so this re-reads immediately before
        writing. Returns False (and writes nothing) when another writer got there first.
        """
        record = _safe_get(CONNECTOR.leads(), lead_id)
        if not record:
            return False
        current = record.get("fields", {}) or {}
        for key, value in expected.items():
            if not _same_value(current.get(LEAD_FIELDS[key]), value):
                logger.info("🔒 Lead %s changed underneath us (%s); skipping write.", lead_id, key)
                return False
        self.update_lead(lead_id, changes)
        return True

    def leads_needing_nudge(self, now: Optional[datetime] = None) -> List[NudgeCandidate]:
        now = now or utc_now()
        handle = CONNECTOR.leads()
        rows: List[NudgeCandidate] = []
        for record in _safe_all(handle, strict=True, formula=awaiting_outreach_formula()):
            lead = Lead.from_record(record)
            if lead.is_paused or not lead.phone or not lead.awaiting_reply:
                continue
            minutes = minutes_between(lead.last_outgoing_message_at, now)
            if not is_due(lead.nudge_sequence_step, minutes):
                continue
            rows.append(
                NudgeCandidate(
                    lead_id=lead.id,
                    client_id=lead.client_id,
                    phone=lead.phone,
                    minutes_since_last_message=minutes,
                    nudge_step=lead.nudge_sequence_step,
                    last_outgoing_message_at=lead.last_outgoing_message_at,
                )
            )
        return rows

    def leads_to_reactivate(self, cutoff: datetime) -> List[Lead]:
        handle = CONNECTOR.leads()
        leads: List[Lead] = []
        for record in _safe_all(handle, strict=True, formula=awaiting_outreach_formula()):
            lead = Lead.from_record(record)
            if not lead.is_paused and lead.awaiting_reply and lead.last_outgoing_message_at >= cutoff:
                leads.append(lead)
        return leads

    def meetings_needing_reminder(self, now: Optional[datetime] = None) -> List[MeetingReminder]:
        """Meetings later today without a day-of reminder, and meetings inside the next hour without an hour-before one.

        A meeting can qualify for both types in the same scan.
        """
        now = now or utc_now()
        today = to_local(now).date()
        one_hour = now + timedelta(hours=1)
        rows: List[MeetingReminder] = []
        for record in _safe_all(CONNECTOR.leads(), strict=True, formula=_lead_ref("SCHEDULED_AT")):
            lead = Lead.from_record(record)
            when = lead.scheduled_at
            if when is None or when < now:
                continue
            base = dict(
                lead_id=lead.id,
                lead_name=lead.name or "lead",
                client_id=lead.client_id,
                consultant_id=lead.consultant_id,
                scheduled_at=when,
            )
            if to_local(when).date() == today and not lead.daily_reminder_sent:
                rows.append(MeetingReminder(reminder_type=ReminderType.MEETING_TODAY, **base))
            if when <= one_hour and not lead.meeting_reminder_sent:
                rows.append(MeetingReminder(reminder_type=ReminderType.ONE_HOUR, **base))
        return rows

    def reset_daily_reminder_flags(self) -> int:
        handle = CONNECTOR.leads()
        daily = LEAD_FIELDS["DAILY_REMINDER_SENT"]
        hourly = LEAD_FIELDS["MEETING_REMINDER_SENT"]
        flagged = _safe_all(handle, strict=True, formula=f"OR({{{daily}}},{{{hourly}}})")
        batch = [
            {"id": r["id"], "fields": {daily: False, hourly: False}}
            for r in flagged
            if _as_bool((r.get("fields") or {}).get(daily)) or _as_bool((r.get("fields") or {}).get(hourly))
        ]
        if batch:
            handle.table.batch_update(batch)
        return len(batch)

    # Messages
    def insert_message(
        self,
        *,
        lead_id: str,
        client_id: Optional[str],
        direction: MessageDirection,
        content: str,
    ) -> Optional[Dict[str, Any]]:
        role = MessageRole.USER if direction == MessageDirection.INBOUND else MessageRole.ASSISTANT
        fields = {
            MESSAGE_FIELDS["LEAD_ID"]: lead_id,
            MESSAGE_FIELDS["CLIENT_ID"]: client_id,
            MESSAGE_FIELDS["DIRECTION"]: direction.value,
            MESSAGE_FIELDS["ROLE"]: role.value,
            MESSAGE_FIELDS["CONTENT"]: content,
            MESSAGE_FIELDS["CREATED_AT"]: utc_now().isoformat(timespec="microseconds"),
        }
        return _safe_create(CONNECTOR.messages(), fields)

    def recent_history(self, lead_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """Most recent ``limit`` turns for a lead, oldest first."""
        limit = limit or settings().HISTORY_LIMIT
        records = _safe_all(
            CONNECTOR.messages(),
            strict=True,
            formula=eq_formula(**{MESSAGE_FIELDS["LEAD_ID"]: lead_id}),
        )
        created = MESSAGE_FIELDS["CREATED_AT"]
        records.sort(key=lambda r: parse_iso((r.get("fields") or {}).get(created)) or _EPOCH)
        return [
            {
                "role": (r.get("fields") or {}).get(MESSAGE_FIELDS["ROLE"]) or MessageRole.USER.value,
                "content": (r.get("fields") or {}).get(MESSAGE_FIELDS["CONTENT"]) or "",
            }
            for r in records[-limit:]
        ]

    # Notifications
    def insert_notification(self, *, user_id: str, message: str, type_: str, related_lead_id: str):
        fields = {
            NOTIFICATION_FIELDS["USER_ID"]: user_id,
            NOTIFICATION_FIELDS["MESSAGE"]: message,
            NOTIFICATION_FIELDS["TYPE"]: type_,
            NOTIFICATION_FIELDS["RELATED_LEAD_ID"]: related_lead_id,
            NOTIFICATION_FIELDS["IS_READ"]: False,
            NOTIFICATION_FIELDS["CREATED_AT"]: iso_now(),
        }
        return _safe_create(CONNECTOR.notifications(), fields)

    # Campaigns
    def get_campaign(self, campaign_id: str) -> Optional[Dict[str, Any]]:
        return _safe_get(CONNECTOR.campaigns(), campaign_id)

    def update_campaign(self, campaign_id: str, status: str):
        return _safe_update(
            CONNECTOR.campaigns(),
            campaign_id,
            {CAMPAIGN_FIELDS["STATUS"]: status, CAMPAIGN_FIELDS["UPDATED_AT"]: iso_now()},
        )

    def new_leads_for_campaign(self, campaign_id: str) -> List[Lead]:
        formula = eq_formula(**{LEAD_FIELDS["CAMPAIGN_ID"]: campaign_id, LEAD_FIELDS["STATUS"]: LeadStatus.NEW.value})
        return [Lead.from_record(r) for r in _safe_all(CONNECTOR.leads(), strict=True, formula=formula)]

    # Consultants
    def active_consultants(self, client_id: Optional[str]) -> List[Consultant]:
        """Active consultants, least recently booked first (never booked leads the queue)."""
        consultants: List[Consultant] = []
        for r in _safe_all(CONNECTOR.consultants()):
            f = r.get("fields", {}) or {}
            if not _as_bool(f.get(CONSULTANT_FIELDS["ACTIVE"])):
                continue
            if client_id and f.get(CONSULTANT_FIELDS["CLIENT_ID"]) not in (None, client_id):
                continue
            consultants.append(
                Consultant(
                    id=r["id"],
                    name=f.get(CONSULTANT_FIELDS["NAME"]) or "",
                    client_id=f.get(CONSULTANT_FIELDS["CLIENT_ID"]),
                    last_meeting_scheduled_at=parse_iso(f.get(CONSULTANT_FIELDS["LAST_MEETING_AT"])),
                )
            )
        consultants.sort(key=lambda c: (c.last_meeting_scheduled_at is not None, c.last_meeting_scheduled_at or _EPOCH))
        return consultants

    # Client settings
    def client_system_prompt(self, client_id: Optional[str]) -> Optional[str]:
        if not client_id:
            return None
        records = _safe_all(
            CONNECTOR.client_settings(),
            formula=eq_formula(**{SETTINGS_FIELDS["CLIENT_ID"]: client_id}),
            max_records=1,
        )
        if not records:
            return None
        prompt = (records[0].get("fields") or {}).get(SETTINGS_FIELDS["SYSTEM_PROMPT"])
        return prompt.strip() if isinstance(prompt, str) and prompt.strip() else None


REPOSITORY = Repository()


# ============================================================
# PUBLIC HELPERS
# ============================================================


def reset_state():
    CONNECTOR._tables.clear()
    CONNECTOR._api = None
    REPOSITORY._lead_phone_index.clear()
    logger.info("🧹 Datastore state and caches cleared.")

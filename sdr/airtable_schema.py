from __future__ import annotations

"""
Central Airtable schema definitions and helpers.

This module keeps the canonical field names for the SDR base together so
engine code can import lightweight helpers instead of hard-coding strings.
Environment variables can still override individual field names (to align
with custom Airtable copies), but the defaults here should always reflect
the live schema.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


# ---------------------------------------------------------------------------
# Core data containers
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    v = value.strip()
    return v if v else None


@dataclass(frozen=True)
class FieldDefinition:
    """
    Represents an Airtable column.

    Args:
        default: Canonical field name in Airtable.
        env_vars: Ordered list of env vars that can override the field name
                  (first non-empty wins).
        options: Allowed values for single-select fields (if applicable).
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    options: Tuple[str, ...] = field(default_factory=tuple)

    def resolve(self) -> str:
        """Return the active field name (env override or default)."""
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default


@dataclass(frozen=True)
class TableDefinition:
    """
    Airtable table metadata with helpers to resolve field names.

    Args:
        default: Human-readable table name in Airtable.
        env_vars: Env vars that can rename the table.
        fields: Mapping of logical keys → FieldDefinition.
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)

    def name(self) -> str:
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default

    def field_name(self, key: str) -> str:
        return self.fields[key].resolve()

    def field_names(self) -> Dict[str, str]:
        return {key: definition.resolve() for key, definition in self.fields.items()}


def _f(default: str, env: str, options: Tuple[str, ...] = ()) -> FieldDefinition:
    return FieldDefinition(default=default, env_vars=(env,), options=options)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LeadStatus(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"
    REACTIVATION_SENT = "REACTIVATION_SENT"


class AIStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class ReminderType(str, Enum):
    MEETING_TODAY = "reuniao_hoje"
    ONE_HOUR = "lembrete_1h"


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------

LEADS_TABLE = TableDefinition(
    default="Leads",
    env_vars=("LEADS_TABLE",),
    fields={
        "CLIENT_ID": _f("client_id", "LEAD_CLIENT_ID_FIELD"),
        "NAME": _f("name", "LEAD_NAME_FIELD"),
        "PHONE": _f("phone", "LEAD_PHONE_FIELD"),
        "CAMPAIGN_ID": _f("campaign_id", "LEAD_CAMPAIGN_ID_FIELD"),
        "CONSULTANT_ID": _f("consultant_id", "LEAD_CONSULTANT_ID_FIELD"),
        "STATUS": _f("status", "LEAD_STATUS_FIELD", tuple(s.value for s in LeadStatus)),
        "AI_STATUS": _f("ai_status", "LEAD_AI_STATUS_FIELD", tuple(s.value for s in AIStatus)),
        "LAST_INCOMING_AT": _f("last_incoming_message_at", "LEAD_LAST_INCOMING_FIELD"),
        "LAST_OUTGOING_AT": _f("last_outgoing_message_at", "LEAD_LAST_OUTGOING_FIELD"),
        "LAST_FOLLOWUP_AT": _f("last_followup_at", "LEAD_LAST_FOLLOWUP_FIELD"),
        "NUDGE_STEP": _f("nudge_sequence_step", "LEAD_NUDGE_STEP_FIELD"),
        "SCHEDULED_AT": _f("scheduled_at", "LEAD_SCHEDULED_AT_FIELD"),
        "DAILY_REMINDER_SENT": _f("daily_reminder_sent", "LEAD_DAILY_REMINDER_FIELD"),
        "MEETING_REMINDER_SENT": _f("meeting_reminder_sent", "LEAD_MEETING_REMINDER_FIELD"),
        "UPDATED_AT": _f("updated_at", "LEAD_UPDATED_AT_FIELD"),
    },
)


def leads_field_map() -> Dict[str, str]:
    return LEADS_TABLE.field_names()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

MESSAGES_TABLE = TableDefinition(
    default="Messages",
    env_vars=("MESSAGES_TABLE",),
    fields={
        "LEAD_ID": _f("lead_id", "MSG_LEAD_ID_FIELD"),
        "CLIENT_ID": _f("client_id", "MSG_CLIENT_ID_FIELD"),
        "DIRECTION": _f("direction", "MSG_DIRECTION_FIELD", tuple(d.value for d in MessageDirection)),
        "ROLE": _f("role", "MSG_ROLE_FIELD", tuple(r.value for r in MessageRole)),
        "CONTENT": _f("content", "MSG_CONTENT_FIELD"),
        "CREATED_AT": _f("created_at", "MSG_CREATED_AT_FIELD"),
    },
)


def messages_field_map() -> Dict[str, str]:
    return MESSAGES_TABLE.field_names()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

NOTIFICATIONS_TABLE = TableDefinition(
    default="Notifications",
    env_vars=("NOTIFICATIONS_TABLE",),
    fields={
        "USER_ID": _f("user_id", "NOTIF_USER_ID_FIELD"),
        "MESSAGE": _f("message", "NOTIF_MESSAGE_FIELD"),
        "TYPE": _f("type", "NOTIF_TYPE_FIELD", tuple(t.value for t in ReminderType)),
        "RELATED_LEAD_ID": _f("related_lead_id", "NOTIF_LEAD_ID_FIELD"),
        "IS_READ": _f("is_read", "NOTIF_IS_READ_FIELD"),
        "CREATED_AT": _f("created_at", "NOTIF_CREATED_AT_FIELD"),
    },
)


def notifications_field_map() -> Dict[str, str]:
    return NOTIFICATIONS_TABLE.field_names()


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------

CAMPAIGNS_TABLE = TableDefinition(
    default="Campaigns",
    env_vars=("CAMPAIGNS_TABLE",),
    fields={
        "CLIENT_ID": _f("client_id", "CAMPAIGN_CLIENT_ID_FIELD"),
        "NAME": _f("name", "CAMPAIGN_NAME_FIELD"),
        "TEMPLATE_NAME": _f("template_name", "CAMPAIGN_TEMPLATE_FIELD"),
        "STATUS": _f("status", "CAMPAIGN_STATUS_FIELD", tuple(s.value for s in CampaignStatus)),
        "UPDATED_AT": _f("updated_at", "CAMPAIGN_UPDATED_AT_FIELD"),
    },
)


def campaign_field_map() -> Dict[str, str]:
    return CAMPAIGNS_TABLE.field_names()


# ---------------------------------------------------------------------------
# Consultants
# ---------------------------------------------------------------------------

CONSULTANTS_TABLE = TableDefinition(
    default="Consultants",
    env_vars=("CONSULTANTS_TABLE",),
    fields={
        "CLIENT_ID": _f("client_id", "CONSULTANT_CLIENT_ID_FIELD"),
        "NAME": _f("name", "CONSULTANT_NAME_FIELD"),
        "ACTIVE": _f("active", "CONSULTANT_ACTIVE_FIELD"),
        "LAST_MEETING_AT": _f("last_meeting_scheduled_at", "CONSULTANT_LAST_MEETING_FIELD"),
    },
)


def consultants_field_map() -> Dict[str, str]:
    return CONSULTANTS_TABLE.field_names()


# ---------------------------------------------------------------------------
# Client Settings
# ---------------------------------------------------------------------------

CLIENT_SETTINGS_TABLE = TableDefinition(
    default="Client Settings",
    env_vars=("CLIENT_SETTINGS_TABLE",),
    fields={
        "CLIENT_ID": _f("client_id", "SETTINGS_CLIENT_ID_FIELD"),
        "SYSTEM_PROMPT": _f("ai_system_prompt", "SETTINGS_PROMPT_FIELD"),
    },
)


def client_settings_field_map() -> Dict[str, str]:
    return CLIENT_SETTINGS_TABLE.field_names()


# ---------------------------------------------------------------------------
# Job Runs (operational log)
# ---------------------------------------------------------------------------

JOB_RUNS_TABLE = TableDefinition(
    default="Job Runs",
    env_vars=("JOB_RUNS_TABLE",),
    fields={
        "TYPE": _f("Type", "RUN_TYPE_FIELD"),
        "PROCESSED": _f("Processed", "RUN_PROCESSED_FIELD"),
        "BREAKDOWN": _f("Breakdown", "RUN_BREAKDOWN_FIELD"),
        "STATUS": _f("Status", "RUN_STATUS_FIELD"),
        "TIMESTAMP": _f("Timestamp", "RUN_TIMESTAMP_FIELD"),
    },
)


def job_runs_field_map() -> Dict[str, str]:
    return JOB_RUNS_TABLE.field_names()

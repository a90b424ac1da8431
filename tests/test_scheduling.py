from datetime import datetime, timedelta, timezone

import pytest

import sdr.scheduling as scheduling
from sdr.datastore import CONNECTOR, REPOSITORY
from sdr.tools import TOOLS, ToolName, resolve_tool, tool_schemas

from conftest import BUSINESS_NOON


def _consultant(name, last_meeting=None, active=True, client_id="client_1"):
    fields = {"name": name, "active": active, "client_id": client_id}
    if last_meeting:
        fields["last_meeting_scheduled_at"] = last_meeting
    return CONNECTOR.consultants().table.create(fields)["id"]


@pytest.fixture(autouse=True)
def _free_calendars():
    scheduling.set_busy_slot_provider(None)
    yield
    scheduling.set_busy_slot_provider(None)


def test_free_slots_skip_weekends_and_start_tomorrow():
    # Friday 11:00 local
    friday = datetime(2025, 8, 15, 14, 0, tzinfo=timezone.utc)
    slots = scheduling.find_free_slots([], friday)

    assert [s.strftime("%a %H:%M") for s in slots] == ["Mon 10:00", "Tue 10:00"]


def test_busy_preferred_hour_moves_to_next_preference():
    monday_10 = datetime(2025, 8, 18, 13, 0, tzinfo=timezone.utc)
    busy = [(monday_10, monday_10 + timedelta(hours=1))]
    slots = scheduling.find_free_slots(busy, datetime(2025, 8, 15, 14, 0, tzinfo=timezone.utc))

    assert [s.strftime("%d %H:%M") for s in slots] == ["18 15:00", "19 10:00"]


def test_format_slot_in_portuguese():
    slot = datetime(2025, 8, 12, 13, 0, tzinfo=timezone.utc)
    assert scheduling.format_slot(slot) == "Terça-feira (12/08) às 10:00"


def test_least_recently_booked_consultant_is_offered_first(make_lead):
    _consultant("Rui", last_meeting="2025-08-10T12:00:00Z")
    never = _consultant("Sara")
    _consultant("Téo", active=False)
    lead = REPOSITORY.get_lead(make_lead())

    proposal = scheduling.propose_meeting_times(lead, now=BUSINESS_NOON)

    assert proposal.consultant_id == never
    assert proposal.message.startswith("Ótimo! Para te ajudar, o consultor Sara tem alguns horários.")
    assert len(proposal.slots) == 2


def test_no_active_consultant_raises(make_lead):
    lead = REPOSITORY.get_lead(make_lead())
    with pytest.raises(scheduling.NoConsultantAvailableError):
        scheduling.propose_meeting_times(lead, now=BUSINESS_NOON)


def test_fully_booked_consultants_get_fallback(make_lead):
    _consultant("Rui")
    scheduling.set_busy_slot_provider(lambda c, start, end: [(start, end)])
    lead = REPOSITORY.get_lead(make_lead())

    proposal = scheduling.propose_meeting_times(lead, now=BUSINESS_NOON)

    assert proposal.consultant_id is None
    assert proposal.message == scheduling.FALLBACK_MESSAGE


def test_propose_tool_qualifies_lead(make_lead, sent):
    consultant_id = _consultant("Sara")
    lead_id = make_lead()
    tool = resolve_tool("propor_agendamento_reuniao")

    result = tool.execute(REPOSITORY.get_lead(lead_id), {})

    assert result.status == "Proposed"
    lead = REPOSITORY.get_lead(lead_id)
    assert lead.status == "QUALIFIED"
    assert lead.consultant_id == consultant_id
    assert lead.last_outgoing_message_at is not None
    assert len(sent) == 1 and "Sara" in sent[0][1]
    assert REPOSITORY.recent_history(lead_id)[-1]["role"] == "assistant"


def test_tool_registry_is_closed():
    assert resolve_tool("apagar_tudo") is None
    assert resolve_tool(None) is None
    assert set(TOOLS) == {ToolName.PROPOSE_MEETING}
    schema = tool_schemas()[0]
    assert schema["type"] == "function"
    assert schema["function"]["name"] == "propor_agendamento_reuniao"

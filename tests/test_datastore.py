from datetime import timedelta

from sdr.airtable_schema import MessageDirection
from sdr.config import settings
from sdr.datastore import CONNECTOR, REPOSITORY, InMemoryTable, Lead, eq_formula
from sdr.logger import log_run

from conftest import BUSINESS_NOON

T = BUSINESS_NOON


def test_conditional_update_only_applies_to_expected_state(make_lead):
    lead_id = make_lead(NUDGE_STEP=2, LAST_OUTGOING_AT=T)

    assert REPOSITORY.update_lead_if(lead_id, {"NUDGE_STEP": 2, "LAST_OUTGOING_AT": T}, {"NUDGE_STEP": 3})
    assert not REPOSITORY.update_lead_if(lead_id, {"NUDGE_STEP": 2}, {"NUDGE_STEP": 9})
    assert not REPOSITORY.update_lead_if(lead_id, {"LAST_OUTGOING_AT": T + timedelta(seconds=1)}, {"NUDGE_STEP": 9})
    assert not REPOSITORY.update_lead_if("rec_missing", {}, {"NUDGE_STEP": 1})

    assert REPOSITORY.get_lead(lead_id).nudge_sequence_step == 3


def test_recent_history_is_latest_turns_oldest_first(make_lead, monkeypatch):
    monkeypatch.setenv("HISTORY_LIMIT", "3")
    settings.cache_clear()
    lead_id = make_lead()
    for i in range(5):
        direction = MessageDirection.INBOUND if i % 2 == 0 else MessageDirection.OUTBOUND
        REPOSITORY.insert_message(lead_id=lead_id, client_id="client_1", direction=direction, content=f"m{i}")
    REPOSITORY.insert_message(lead_id="other", client_id="client_1", direction=MessageDirection.INBOUND, content="x")

    history = REPOSITORY.recent_history(lead_id)

    assert history == [
        {"role": "user", "content": "m2"},
        {"role": "assistant", "content": "m3"},
        {"role": "user", "content": "m4"},
    ]


def test_find_lead_by_phone_normalises_digits(make_lead):
    lead_id = make_lead(PHONE="+55 (11) 98888-7777")

    assert REPOSITORY.find_lead_by_phone("5511988887777").id == lead_id
    assert REPOSITORY.find_lead_by_phone("+55 11 98888 7777").id == lead_id
    assert REPOSITORY.find_lead_by_phone("12") is None
    assert REPOSITORY.find_lead_by_phone("5511900000000") is None


def test_nudge_candidates_carry_scan_snapshot(make_lead):
    lead_id = make_lead(NUDGE_STEP=1, LAST_OUTGOING_AT=T)

    (candidate,) = REPOSITORY.leads_needing_nudge(T + timedelta(minutes=12))

    assert candidate.lead_id == lead_id
    assert candidate.nudge_step == 1
    assert candidate.minutes_since_last_message == 12
    assert candidate.last_outgoing_message_at == T
    assert REPOSITORY.leads_needing_nudge(T + timedelta(minutes=9)) == []


def test_in_memory_formula_matching():
    table = InMemoryTable("t")
    table.create({"a": "1", "b": "x"})
    table.create({"a": "1", "b": "y"})

    assert len(table.all(formula=eq_formula(a="1"))) == 2
    assert len(table.all(formula=eq_formula(a="1", b="y"))) == 1
    assert eq_formula(a="1", b="y") == "AND({a}='1',{b}='y')"


def test_log_run_writes_job_runs_row():
    res = log_run("NUDGES", processed=3, breakdown={"sent": 2, "failed": 1})

    assert res["ok"] is True
    row = CONNECTOR.job_runs().table.all()[0]["fields"]
    assert row["Type"] == "NUDGES"
    assert row["Processed"] == 3
    assert row["Breakdown"] == '{"sent": 2, "failed": 1}'


def test_in_memory_formula_operators():
    table = InMemoryTable("t")
    table.create({"ai_status": "paused", "phone": "1", "sent": True})
    table.create({"phone": "2", "sent": False})
    table.create({"ai_status": "active", "phone": "", "other": True})

    def phones(formula):
        return [r["fields"]["phone"] for r in table.all(formula=formula)]

    assert phones("NOT({ai_status}='paused')") == ["2", ""]
    assert phones("AND(NOT({ai_status}='paused'),{phone})") == ["2"]
    assert phones("OR({sent},{other})") == ["1", ""]
    assert phones("{ai_status}=''") == ["2"]
    assert phones("{phone}='it\\'s'") == []


def test_lead_scans_read_every_row(make_lead, monkeypatch):
    calls = []
    original_all = InMemoryTable.all

    def spy(self, **kwargs):
        calls.append(kwargs)
        return original_all(self, **kwargs)

    monkeypatch.setattr(InMemoryTable, "all", spy)
    for i in range(3):
        make_lead(PHONE=f"551199999100{i}", LAST_OUTGOING_AT=T, DAILY_REMINDER_SENT=True, MEETING_REMINDER_SENT=i == 0)

    assert len(REPOSITORY.leads_needing_nudge(T + timedelta(minutes=10))) == 3
    assert len(REPOSITORY.leads_to_reactivate(T - timedelta(hours=1))) == 3
    assert REPOSITORY.reset_daily_reminder_flags() == 3
    assert REPOSITORY.find_lead_by_phone("5511999991002") is not None

    assert calls
    assert all("max_records" not in kwargs and kwargs.get("formula") for kwargs in calls)
    assert not any(lead.daily_reminder_sent for lead in map(Lead.from_record, CONNECTOR.leads().table.all()))

import pytest

import sdr.campaign_runner as cr
from sdr.datastore import CONNECTOR, REPOSITORY
from sdr.whatsapp_sender import WhatsAppError


def _campaign(status="DRAFT", template="boas_vindas"):
    fields = {"client_id": "client_1", "name": "Agosto", "status": status}
    if template:
        fields["template_name"] = template
    return CONNECTOR.campaigns().table.create(fields)["id"]


@pytest.fixture
def templates(monkeypatch):
    calls = []

    def fake_send_template(to, template_name, components=None, language=None):
        calls.append((to, template_name, components))
        return {"status": "sent", "id": f"wamid.{len(calls)}", "raw": {}}

    monkeypatch.setattr(cr, "send_template", fake_send_template)
    return calls


def test_campaign_contacts_new_leads_and_completes(make_lead, templates):
    campaign_id = _campaign()
    a = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE="5511900000001")
    b = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE="5511900000002")
    c = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE="5511900000003")
    make_lead(CAMPAIGN_ID=campaign_id, STATUS="CONTACTED", PHONE="5511900000004")
    make_lead(CAMPAIGN_ID="other", STATUS="NEW", PHONE="5511900000005")

    res = cr.process_campaign(campaign_id)

    assert res["status"] == "Success"
    assert res["leads_processed"] == 3
    assert [t[0] for t in templates] == ["5511900000001", "5511900000002", "5511900000003"]
    assert all(t[1] == "boas_vindas" for t in templates)
    for lead_id in (a, b, c):
        lead = REPOSITORY.get_lead(lead_id)
        assert lead.status == "CONTACTED"
        assert lead.last_outgoing_message_at is not None
    assert REPOSITORY.get_campaign(campaign_id)["fields"]["status"] == "COMPLETED"


def test_empty_campaign_is_completed(templates):
    campaign_id = _campaign()

    res = cr.process_campaign(campaign_id)

    assert res["status"] == "Completed"
    assert templates == []
    assert REPOSITORY.get_campaign(campaign_id)["fields"]["status"] == "COMPLETED"


def test_missing_campaign_raises():
    with pytest.raises(cr.CampaignNotFoundError):
        cr.process_campaign("rec_missing")


def test_failed_lead_is_isolated_and_campaign_still_completes(monkeypatch, make_lead):
    campaign_id = _campaign(template=None)
    bad = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE="5511900000001")
    good = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE="5511900000002")
    no_phone = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW", PHONE=None)
    used = []

    def fake_send_template(to, template_name, components=None, language=None):
        used.append(template_name)
        if to == "5511900000001":
            raise WhatsAppError("template paused", status_code=400)
        return {"status": "sent", "id": "wamid.x", "raw": {}}

    monkeypatch.setattr(cr, "send_template", fake_send_template)

    res = cr.process_campaign(campaign_id)

    assert (res["sent"], res["failed"], res["skipped"]) == (1, 1, 1)
    assert set(used) == {"hello_world"}
    assert REPOSITORY.get_lead(bad).status == "NEW"
    assert REPOSITORY.get_lead(good).status == "CONTACTED"
    assert REPOSITORY.get_lead(no_phone).status == "NEW"
    assert REPOSITORY.get_campaign(campaign_id)["fields"]["status"] == "COMPLETED"


def test_template_send_is_retried(monkeypatch, make_lead):
    monkeypatch.setenv("JOB_MAX_RETRIES", "2")
    cr.settings.cache_clear()
    monkeypatch.setattr("sdr.runtime.time.sleep", lambda s: None)
    campaign_id = _campaign()
    lead_id = make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW")
    attempts = []

    def flaky(to, template_name, components=None, language=None):
        attempts.append(to)
        if len(attempts) == 1:
            raise WhatsAppError("rate limited", status_code=429)
        return {"status": "sent", "id": "wamid.ok", "raw": {}}

    monkeypatch.setattr(cr, "send_template", flaky)

    res = cr.process_campaign(campaign_id)

    assert len(attempts) == 2
    assert res["sent"] == 1
    assert REPOSITORY.get_lead(lead_id).status == "CONTACTED"


def test_start_reactivation_campaign_activates_then_runs(monkeypatch, make_lead, templates):
    campaign_id = _campaign()
    make_lead(CAMPAIGN_ID=campaign_id, STATUS="NEW")
    seen_status = []
    real_update = REPOSITORY.update_campaign

    def spy(cid, status):
        seen_status.append(status)
        return real_update(cid, status)

    monkeypatch.setattr(REPOSITORY, "update_campaign", spy)

    res = cr.start_reactivation_campaign(campaign_id)

    assert res["status"] == "Success"
    assert seen_status == ["ACTIVE", "COMPLETED"]


def test_follow_up_blast_personalises_and_marks_leads(make_lead, templates):
    a = make_lead(NAME="Gabi", PHONE="5511900000001")
    b = make_lead(NAME=None, PHONE="5511900000002")
    other_tenant = make_lead(CLIENT_ID="client_2", PHONE="5511900000003")

    res = cr.run_follow_up_blast([a, b, other_tenant, a], "retomada", client_id="client_1")

    assert (res["sent"], res["skipped"]) == (2, 1)
    names = [t[2][0]["parameters"][0]["text"] for t in templates]
    assert names == ["Gabi", "cliente"]
    lead = REPOSITORY.get_lead(a)
    assert lead.status == "REACTIVATION_SENT"
    assert CONNECTOR.leads().table.get(a)["fields"]["last_followup_at"]

"""
Tests for Kommo webhook handling and the Kommo client
"""
import asyncio

import httpx
import pytest
from pydantic import ValidationError

from conftest import RecordingHandler, mock_client
from leadsync.core.errors import ConfigurationMissing, MalformedResponse
from pydantic import ValidationError
from leadsync.models.audit import Event
from leadsync.models.lead import LeadEvent
from leadsync.services.kommo_client import (
    KommoClient,
    KommoConfig,
    get_kommo_config,
    kommo_client_for,
)
from leadsync.services.kommo_webhook import (
    KommoWebhookPayload,
    classify_stage,
    normalize_form_payload,
    process_kommo_webhook,
)
from leadsync.services.settings_service import set_setting


STAGE_IDS = {"atendido": "140", "visita_feita": "141", "ganho": "142", "perdido": "143"}


@pytest.fixture
def kommo_configured(db_session, test_tenant):
    set_setting(db_session, test_tenant.id, "KOMMO_CONFIG", {
        "apiToken": "kommo-token",
        "accountId": "1",
        "pipelineId": "10",
        "stageIds": STAGE_IDS,
    })
    return test_tenant


def status_payload(lead_id, status_id):
    return KommoWebhookPayload.model_validate({
        "leads": [{"id": lead_id, "name": "Maria"}],
        "leads_status": [{"lead_id": lead_id, "status_id": status_id}],
    })


def test_normalize_form_payload():
    payload = normalize_form_payload({
        "leads[status][0][id]": "42",
        "leads[status][0][status_id]": "142",
        "leads[status][0][pipeline_id]": "10",
        "leads[status][1][id]": "43",
        "leads[status][1][status_id]": "140",
        "account[id]": "1",
    })

    assert [lead["id"] for lead in payload["leads"]] == ["42", "43"]
    assert payload["leads_status"][0] == {"lead_id": "42", "status_id": "142", "pipeline_id": "10"}


def test_classify_stage():
    assert classify_stage(STAGE_IDS, 142) == "lead_ganho"
    assert classify_stage(STAGE_IDS, "141") == "lead_visita_feita"
    # Configured but not tracked
    assert classify_stage(STAGE_IDS, "143") is None
    assert classify_stage(STAGE_IDS, "999") is None


def test_webhook_captures_tracked_stage(db_session, kommo_configured):
    result = process_kommo_webhook(db_session, kommo_configured.id, status_payload("42", "142"))

    assert result["success"] is True
    assert result["data"] == {"processedLeads": 1, "capturedEvents": 1}
    event = db_session.query(LeadEvent).one()
    assert event.lead_id == "42"
    assert event.event_type == "lead_ganho"
    assert event.sent_to_facebook is False

    audit = db_session.query(Event).one()
    assert audit.title == "Lead Status Changed"
    assert audit.source == "kommo"


def test_webhook_ignores_untracked_stage(db_session, kommo_configured):
    result = process_kommo_webhook(db_session, kommo_configured.id, status_payload("42", "143"))

    assert result["data"]["capturedEvents"] == 0
    assert db_session.query(LeadEvent).count() == 0


def test_webhook_without_lead_information(db_session, kommo_configured):
    result = process_kommo_webhook(db_session, kommo_configured.id, KommoWebhookPayload(leads=[]))

    assert result == {"success": False, "message": "No lead information in webhook data"}


def test_webhook_without_stage_ids_fails(db_session, test_tenant):
    set_setting(db_session, test_tenant.id, "KOMMO_API_TOKEN", "kommo-token")

    with pytest.raises(ConfigurationMissing):
        process_kommo_webhook(db_session, test_tenant.id, status_payload("42", "142"))

    assert db_session.query(LeadEvent).count() == 0
    audit = db_session.query(Event).one()
    assert audit.type == "error"
    assert audit.title == "Webhook Processing Failed"


def test_get_kommo_config_flat_keys(db_session, test_tenant):
    with pytest.raises(ConfigurationMissing):
        get_kommo_config(db_session, test_tenant.id)
    assert kommo_client_for(db_session, test_tenant.id) is None

    set_setting(db_session, test_tenant.id, "KOMMO_API_TOKEN", "flat-token")
    set_setting(db_session, test_tenant.id, "KOMMO_STAGE_IDS", '{"ganho": 142}')
    config = get_kommo_config(db_session, test_tenant.id)

    assert config.api_token == "flat-token"
    assert config.stage_ids == {"ganho": "142"}
    assert kommo_client_for(db_session, test_tenant.id) is not None


def test_unparseable_stage_ids_are_empty(db_session, test_tenant):
    set_setting(db_session, test_tenant.id, "KOMMO_CONFIG", {"apiToken": "t", "stageIds": "{not json"})
    assert get_kommo_config(db_session, test_tenant.id).stage_ids == {}


def test_get_lead_contact():
    handler = RecordingHandler(httpx.Response(200, json={
        "id": 42,
        "name": "Maria Silva",
        "custom_fields_values": [
            {"field_code": "PHONE", "values": [{"value": "+55 11 9999-0000"}]},
            {"field_code": "EMAIL", "values": [{"value": "maria@example.com"}]},
            {"field_code": None, "values": []},
        ],
    }))
    client = KommoClient(KommoConfig(api_token="kommo-token"), http_client=mock_client(handler))

    contact = asyncio.run(client.get_lead_contact("42"))

    assert contact.name == "Maria Silva"
    assert contact.email == "maria@example.com"
    assert contact.phone == "+55 11 9999-0000"
    assert handler.requests[0].url.path == "/api/v4/leads/42"


def test_request_without_token_raises():
    client = KommoClient(KommoConfig(), http_client=mock_client(RecordingHandler(httpx.Response(200, json={}))))
    with pytest.raises(ConfigurationMissing):
        asyncio.run(client.get_lead_details("42"))


def test_webhook_payload_accepts_numeric_ids(db_session, kommo_configured):
    payload = KommoWebhookPayload.model_validate({
        "leads": [{"id": 42, "price": 1000}],
        "leads_status": [{"lead_id": 42, "status_id": 142, "pipeline_id": 10}],
    })

    process_kommo_webhook(db_session, kommo_configured.id, payload)

    assert db_session.query(LeadEvent).one().lead_id == "42"


@pytest.mark.parametrize("body", [
    {"leads": {"status": [{"id": "42"}]}, "leads_status": []},
    {"leads": [{"id": "42"}], "leads_status": ["42"]},
    {"leads": [{"name": "no id"}], "leads_status": []},
])
def test_webhook_payload_rejects_malformed_bodies(body):
    with pytest.raises(ValidationError):
        KommoWebhookPayload.model_validate(body)


@pytest.mark.parametrize("body", [
    [],
    "Maria",
    {"name": "Maria", "custom_fields_values": {"EMAIL": "maria@example.com"}},
    {"name": "Maria", "custom_fields_values": ["EMAIL"]},
    {"name": {"first": "Maria"}},
])
def test_get_lead_contact_rejects_malformed_lead(body):
    handler = RecordingHandler(httpx.Response(200, json=body))
    client = KommoClient(KommoConfig(api_token="kommo-token"), http_client=mock_client(handler))

    with pytest.raises(MalformedResponse):
        asyncio.run(client.get_lead_contact("42"))


def test_get_lead_contact_numeric_phone():
    handler = RecordingHandler(httpx.Response(200, json={
        "name": "Maria",
        "custom_fields_values": [{"field_code": "PHONE", "values": [{"value": 5511999990000}]}],
    }))
    client = KommoClient(KommoConfig(api_token="kommo-token"), http_client=mock_client(handler))

    assert asyncio.run(client.get_lead_contact("42")).phone == "5511999990000"

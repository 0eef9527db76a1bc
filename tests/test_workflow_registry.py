"""
Tests for the N8N workflow registry
"""
import asyncio
import json

import httpx
import pytest

from conftest import RecordingHandler, mock_client
from leadsync.core.errors import InvalidSignature, TransportError, WorkflowNotFound
from leadsync.models.audit import Event
from leadsync.models.workflow import WorkflowExecution
from leadsync.services.settings_service import set_setting
from leadsync.services.workflow_registry import (
    WorkflowCallback,
    get_latest_execution,
    get_n8n_config,
    list_workflows,
    load_workflow_file,
    record_callback,
    register_workflow,
    sign_payload,
    trigger_workflow,
    verify_callback,
    verify_webhook_signature,
)


@pytest.fixture
def workflows_dir(tmp_path):
    (tmp_path / "lead-won.json").write_text(json.dumps({
        "name": "Lead won",
        "nodes": [{"name": "Webhook", "type": "n8n-nodes-base.webhook"}],
        "connections": {"Webhook": {}},
    }))
    (tmp_path / "broken.json").write_text("{not json")
    return str(tmp_path)


def test_load_workflow_file(workflows_dir):
    workflow = load_workflow_file("lead-won", workflows_dir)
    assert workflow["name"] == "Lead won"

    with pytest.raises(WorkflowNotFound):
        load_workflow_file("missing", workflows_dir)


@pytest.mark.parametrize("workflow_id", ["../secrets", "a/b", ".hidden", ""])
def test_load_workflow_file_rejects_paths(workflows_dir, workflow_id):
    with pytest.raises(WorkflowNotFound):
        load_workflow_file(workflow_id, workflows_dir)


def test_register_workflow_is_idempotent(db_session, test_tenant):
    first = register_workflow(db_session, test_tenant.id, "lead-won", "Lead won")
    second = register_workflow(db_session, test_tenant.id, "lead-won", "Lead won v2", status="active")

    assert first.id == second.id
    assert second.name == "Lead won v2"
    assert second.status == "active"


@pytest.mark.parametrize("workflow_id, options", [
    ("../secrets", {}),
    ("", {}),
    ("lead-won", {"status": "paused"}),
    ("lead-won", {"workflow_type": "cron"}),
])
def test_register_workflow_rejects_invalid_values(db_session, test_tenant, workflow_id, options):
    with pytest.raises(ValueError):
        register_workflow(db_session, test_tenant.id, workflow_id, "Lead won", **options)


def test_list_workflows_merges_file_content(db_session, test_tenant, workflows_dir):
    register_workflow(db_session, test_tenant.id, "lead-won", "Lead won", status="active")
    register_workflow(db_session, test_tenant.id, "broken", "Broken")
    register_workflow(db_session, test_tenant.id, "gone", "Gone")

    workflows = {item["workflowId"]: item for item in list_workflows(db_session, test_tenant.id, workflows_dir)}

    assert workflows["lead-won"]["active"] is True
    assert workflows["lead-won"]["nodes"][0]["name"] == "Webhook"
    assert "error" not in workflows["lead-won"]
    assert "error" in workflows["broken"]
    assert workflows["gone"]["error"] == "Workflow not found: gone"


def test_get_n8n_config(db_session, test_tenant):
    assert get_n8n_config(db_session, test_tenant.id).webhook_secret == ""

    set_setting(db_session, test_tenant.id, "N8N_WEBHOOK_SECRET", "flat")
    assert get_n8n_config(db_session, test_tenant.id).webhook_secret == "flat"

    set_setting(db_session, test_tenant.id, "N8N_CONFIG", {"baseUrl": "https://n8n.example.com", "webhookSecret": "obj"})
    config = get_n8n_config(db_session, test_tenant.id)
    assert config.base_url == "https://n8n.example.com"
    assert config.webhook_secret == "obj"


def test_webhook_signature():
    body = b'{"leadId": "42"}'
    signature = sign_payload("secret", body)

    assert verify_webhook_signature("secret", signature, body)
    assert not verify_webhook_signature("secret", signature, b'{"leadId": "43"}')
    assert not verify_webhook_signature("other", signature, body)
    assert not verify_webhook_signature("secret", None, body)
    assert not verify_webhook_signature("", signature, body)


def test_trigger_workflow_records_execution(db_session, test_tenant):
    set_setting(db_session, test_tenant.id, "N8N_CONFIG", {"baseUrl": "https://n8n.example.com", "webhookSecret": "secret"})
    workflow = register_workflow(db_session, test_tenant.id, "lead-won", "Lead won")
    handler = RecordingHandler(httpx.Response(200, json={"ok": True}))

    execution = asyncio.run(trigger_workflow(
        db_session, test_tenant.id, "lead-won", {"leadId": "42"}, http_client=mock_client(handler)
    ))

    request = handler.requests[0]
    assert str(request.url) == "https://n8n.example.com/webhook/lead-won"
    assert verify_webhook_signature("secret", request.headers["x-n8n-signature"], request.content)

    assert execution.status == "success"
    assert execution.workflow_pk == workflow.id
    assert execution.response_payload == {"ok": True}
    assert execution.finished_at is not None
    assert get_latest_execution(db_session, test_tenant.id, "lead-won").id == execution.id

    audit = db_session.query(Event).one()
    assert audit.title == "Workflow Triggered"


def test_trigger_without_secret_is_unsigned(db_session, test_tenant):
    handler = RecordingHandler(httpx.Response(200, json={}))

    asyncio.run(trigger_workflow(db_session, test_tenant.id, "adhoc", {}, http_client=mock_client(handler)))

    assert "x-n8n-signature" not in handler.requests[0].headers


def test_trigger_failure_is_recorded_and_raised(db_session, test_tenant):
    handler = RecordingHandler(httpx.ConnectError("connection refused"))

    with pytest.raises(TransportError):
        asyncio.run(trigger_workflow(db_session, test_tenant.id, "lead-won", {}, http_client=mock_client(handler)))

    execution = db_session.query(WorkflowExecution).one()
    assert execution.status == "error"
    assert "connection refused" in execution.error_message
    assert db_session.query(Event).one().title == "Workflow Trigger Failed"


def test_latest_execution_missing(db_session, test_tenant):
    assert get_latest_execution(db_session, test_tenant.id, "lead-won") is None


def test_verify_callback(db_session, test_tenant):
    body = b'{"status": "success"}'

    # No secret configured: nothing can be verified
    with pytest.raises(InvalidSignature):
        verify_callback(db_session, test_tenant.id, sign_payload("secret", body), body)

    set_setting(db_session, test_tenant.id, "N8N_CONFIG", {"webhookSecret": "secret"})
    verify_callback(db_session, test_tenant.id, sign_payload("secret", body), body)
    with pytest.raises(InvalidSignature):
        verify_callback(db_session, test_tenant.id, sign_payload("other", body), body)
    with pytest.raises(InvalidSignature):
        verify_callback(db_session, test_tenant.id, None, body)


def test_record_callback_completes_execution(db_session, test_tenant):
    handler = RecordingHandler(httpx.Response(200, json={"executionStarted": True}))
    started = asyncio.run(trigger_workflow(
        db_session, test_tenant.id, "lead-won", {"leadId": "42"}, http_client=mock_client(handler)
    ))

    execution = record_callback(db_session, test_tenant.id, "lead-won", WorkflowCallback(
        executionId=started.id, status="error", error="Kommo lead not found"
    ))

    assert execution.id == started.id
    assert execution.status == "error"
    assert execution.error_message == "Kommo lead not found"
    assert db_session.query(WorkflowExecution).count() == 1
    audit = db_session.query(Event).filter(Event.title == "Workflow Run Failed").one()
    assert audit.event_metadata["executionId"] == str(started.id)


def test_record_callback_creates_execution(db_session, test_tenant):
    workflow = register_workflow(db_session, test_tenant.id, "lead-won", "Lead won")

    execution = record_callback(db_session, test_tenant.id, "lead-won", WorkflowCallback(
        status="success", data={"updated": 1}
    ))

    assert execution.workflow_pk == workflow.id
    assert execution.status == "success"
    assert execution.response_payload == {"updated": 1}
    assert execution.finished_at is not None
    assert get_latest_execution(db_session, test_tenant.id, "lead-won").id == execution.id
    assert db_session.query(Event).one().title == "Workflow Run Completed"

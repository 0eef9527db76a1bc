"""
Tests for dashboard read models
"""
import asyncio
from datetime import datetime, timedelta

from leadsync.services.dashboard_service import get_dashboard_stats, get_integration_status
from leadsync.services.lead_pipeline import capture_lead_event
from leadsync.services.settings_service import set_setting
from leadsync.services.utm_service import capture_utm


def by_id(integrations):
    return {item["id"]: item for item in integrations}


def test_integration_status_empty(db_session, test_tenant):
    integrations = by_id(get_integration_status(db_session, test_tenant.id))

    assert set(integrations) == {"kommo", "facebook", "n8n"}
    assert all(not item["connected"] for item in integrations.values())
    assert integrations["facebook"]["status"] == "disconnected"


def test_integration_status_flat_keys_or_config_object(db_session, test_tenant):
    for key in ("KOMMO_API_TOKEN", "KOMMO_ACCOUNT_ID", "KOMMO_PIPELINE_ID"):
        set_setting(db_session, test_tenant.id, key, "x")
    set_setting(db_session, test_tenant.id, "FACEBOOK_CONFIG", {
        "accessToken": "t", "pixelId": "1", "appId": "2", "appSecret": "s",
    })

    integrations = by_id(get_integration_status(db_session, test_tenant.id))

    assert integrations["kommo"]["connected"] is True
    assert integrations["facebook"]["connected"] is True
    assert integrations["n8n"]["connected"] is False
    assert {"key": "FACEBOOK_PIXEL_ID", "status": "set"} in integrations["facebook"]["credentials"]


def test_dashboard_stats(db_session, test_tenant):
    today = datetime.utcnow().date()
    sent = capture_lead_event(db_session, test_tenant.id, "1", "ganho")
    capture_lead_event(db_session, test_tenant.id, "1", "atendido")
    capture_lead_event(db_session, test_tenant.id, "2", "ganho")
    old = capture_lead_event(db_session, test_tenant.id, "3", "ganho")
    sent.mark_sent()
    old.created_at = datetime.utcnow() - timedelta(days=2)
    db_session.commit()
    asyncio.run(capture_utm(db_session, test_tenant.id, "1", {"source": "google"}))
    asyncio.run(capture_utm(db_session, test_tenant.id, "2", {}))

    stats = get_dashboard_stats(db_session, test_tenant.id, today=today)

    assert stats["leadsToday"] == {"count": 2}
    assert stats["eventsToday"] == {"total": 3, "success": 1, "failed": 2}
    assert stats["pendingEvents"] == 3
    assert stats["utmData"] == {"percentage": 50, "raw": "1 of 2"}
    assert stats["integrationStatus"]["status"] == "Incomplete"


def test_dashboard_stats_empty_tenant(db_session, test_tenant):
    stats = get_dashboard_stats(db_session, test_tenant.id)

    assert stats["eventsToday"] == {"total": 0, "success": 0, "failed": 0}
    assert stats["utmData"]["percentage"] == 0

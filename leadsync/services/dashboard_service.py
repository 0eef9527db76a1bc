"""
Dashboard read models
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import Optional, Dict, Any, List
from datetime import date, datetime, time, timedelta
import uuid

from leadsync.models.lead import LeadEvent
from leadsync.services.settings_service import get_api_credentials, credential_status
from leadsync.services.utm_service import get_utm_stats


INTEGRATIONS = [
    {
        "type": "kommo",
        "name": "Kommo CRM",
        "description": "Connect with Kommo CRM to capture and update lead data",
        "config_key": "KOMMO_CONFIG",
        "credentials": ["KOMMO_API_TOKEN", "KOMMO_ACCOUNT_ID", "KOMMO_PIPELINE_ID"],
        "config_fields": ["apiToken", "accountId", "pipelineId"],
    },
    {
        "type": "facebook",
        "name": "Facebook Conversions API",
        "description": "Send offline conversion events to Facebook Ads",
        "config_key": "FACEBOOK_CONFIG",
        "credentials": ["FACEBOOK_ACCESS_TOKEN", "FACEBOOK_PIXEL_ID", "FACEBOOK_APP_ID", "FACEBOOK_APP_SECRET"],
        "config_fields": ["accessToken", "pixelId", "appId", "appSecret"],
    },
    {
        "type": "n8n",
        "name": "N8N",
        "description": "Integration with workflow automation engine",
        "config_key": "N8N_CONFIG",
        "credentials": ["N8N_WEBHOOK_SECRET"],
        "config_fields": ["webhookSecret"],
    },
]


def get_integration_status(db: Session, tenant_id: uuid.UUID) -> List[Dict[str, Any]]:
    """
    Per-integration credential status

    A service config object counts for a credential when its matching field
    is set, so tenants configured either way show as connected.
    """
    credentials = get_api_credentials(db, tenant_id)

    integrations = []
    for integration in INTEGRATIONS:
        service_config = credentials.get(integration["config_key"])
        if not isinstance(service_config, dict):
            service_config = {}

        statuses = []
        for key, field in zip(integration["credentials"], integration["config_fields"]):
            status = credential_status(credentials.get(key))
            if status == "missing":
                status = credential_status(service_config.get(field))
            statuses.append({"key": key, "status": status})

        connected = all(item["status"] == "set" for item in statuses)
        integrations.append({
            "id": integration["type"],
            "name": integration["name"],
            "description": integration["description"],
            "credentials": statuses,
            "status": "connected" if connected else "disconnected",
            "connected": connected,
        })
    return integrations


def get_dashboard_stats(db: Session, tenant_id: uuid.UUID, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or datetime.utcnow().date()
    start = datetime.combine(today, time.min)
    end = start + timedelta(days=1)

    todays_events = db.query(LeadEvent).filter(
        LeadEvent.tenant_id == tenant_id,
        LeadEvent.created_at >= start,
        LeadEvent.created_at < end
    )
    total = todays_events.count()
    sent = todays_events.filter(LeadEvent.sent_to_facebook.is_(True)).count()
    leads_today = db.query(func.count(func.distinct(LeadEvent.lead_id))).filter(
        LeadEvent.tenant_id == tenant_id,
        LeadEvent.created_at >= start,
        LeadEvent.created_at < end
    ).scalar() or 0
    pending_total = db.query(func.count(LeadEvent.id)).filter(
        LeadEvent.tenant_id == tenant_id,
        LeadEvent.sent_to_facebook.is_(False)
    ).scalar() or 0

    integrations = get_integration_status(db, tenant_id)
    utm_stats = get_utm_stats(db, tenant_id)

    return {
        "integrationStatus": {
            "status": "Active" if all(i["connected"] for i in integrations) else "Incomplete",
            "integrations": {i["id"]: i["status"] for i in integrations},
        },
        "leadsToday": {"count": leads_today},
        "eventsToday": {
            "total": total,
            "success": sent,
            "failed": total - sent,
        },
        "pendingEvents": pending_total,
        "utmData": {
            "percentage": utm_stats["percentage"],
            "raw": f"{utm_stats['withUtm']} of {utm_stats['total']}",
        },
    }

"""
Dashboard, activity log and settings endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, Dict, Any
import logging

from leadsync.core.database import get_db
from leadsync.core.tenancy import get_current_tenant, get_current_user
from leadsync.models.audit import EventType, EventSource
from leadsync.models.tenant import Tenant
from leadsync.services.audit_service import list_events, log_event
from leadsync.services.dashboard_service import get_dashboard_stats, get_integration_status
from leadsync.services.settings_service import (
    CREDENTIAL_KEYS,
    SERVICE_CONFIG_KEYS,
    credential_status,
    get_api_credentials,
    get_tenant_config,
    save_tenant_config,
    set_setting,
)

logger = logging.getLogger(__name__)

# Operator endpoints: bearer token of a user of the resolved company
router = APIRouter(dependencies=[Depends(get_current_user)])

# UI field name -> setting key
SETTINGS_FIELDS = {
    "kommoApiToken": "KOMMO_API_TOKEN",
    "kommoAccountId": "KOMMO_ACCOUNT_ID",
    "kommoPipelineId": "KOMMO_PIPELINE_ID",
    "facebookAccessToken": "FACEBOOK_ACCESS_TOKEN",
    "facebookPixelId": "FACEBOOK_PIXEL_ID",
    "facebookAppId": "FACEBOOK_APP_ID",
    "facebookAppSecret": "FACEBOOK_APP_SECRET",
    "n8nWebhookSecret": "N8N_WEBHOOK_SECRET",
}


class SettingsUpdateRequest(BaseModel):
    kommoApiToken: str
    kommoAccountId: str
    kommoPipelineId: str
    facebookAccessToken: str
    facebookPixelId: str
    facebookAppId: str
    facebookAppSecret: str
    n8nWebhookSecret: str


@router.get("/dashboard/stats")
async def dashboard_stats(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return get_dashboard_stats(db, tenant.id)


@router.get("/events")
async def get_events(
    limit: int = Query(20, ge=1, le=500),
    source: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Recent integration activity"""
    events = list_events(db, tenant.id, limit=limit, source=source, event_type=type)
    return [
        {
            "id": str(event.id),
            "type": event.type,
            "title": event.title,
            "description": event.description,
            "source": event.source,
            "metadata": event.event_metadata,
            "timestamp": event.timestamp,
        }
        for event in events
    ]


@router.get("/integrations")
async def integrations(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return get_integration_status(db, tenant.id)


@router.get("/credentials")
async def credentials(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Which settings are filled in, without their values"""
    stored = get_api_credentials(db, tenant.id)
    return [{"key": key, "status": credential_status(value)} for key, value in stored.items()]


@router.get("/settings")
async def get_settings(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    stored = get_api_credentials(db, tenant.id)
    return {field: stored.get(key) or "" for field, key in SETTINGS_FIELDS.items()}


@router.put("/settings")
async def update_settings(
    request: SettingsUpdateRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Replace every flat credential"""
    values = request.model_dump()
    for field, key in SETTINGS_FIELDS.items():
        set_setting(db, tenant.id, key, values[field])

    log_event(
        db,
        tenant.id,
        EventType.SUCCESS,
        "Settings Updated",
        EventSource.SYSTEM,
        description="API credentials and settings updated successfully",
        metadata={"keys": CREDENTIAL_KEYS}
    )
    return {"success": True, "message": "Settings updated successfully"}


@router.get("/config")
async def get_config(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Per-service config objects, secrets reported as set/missing"""
    kommo = get_tenant_config(db, tenant.id, SERVICE_CONFIG_KEYS["kommo"])
    facebook = get_tenant_config(db, tenant.id, SERVICE_CONFIG_KEYS["facebook"])
    n8n = get_tenant_config(db, tenant.id, SERVICE_CONFIG_KEYS["n8n"])

    return {
        "kommo": {
            "configured": kommo is not None,
            "apiToken": credential_status((kommo or {}).get("apiToken")),
            "accountId": credential_status((kommo or {}).get("accountId")),
            "pipelineId": credential_status((kommo or {}).get("pipelineId")),
            "stageIds": len((kommo or {}).get("stageIds") or {}),
        },
        "facebook": {
            "configured": facebook is not None,
            "accessToken": credential_status((facebook or {}).get("accessToken")),
            "pixelId": credential_status((facebook or {}).get("pixelId")),
            "appId": credential_status((facebook or {}).get("appId")),
            "appSecret": credential_status((facebook or {}).get("appSecret")),
        },
        "n8n": {
            "configured": n8n is not None,
            "baseUrl": (n8n or {}).get("baseUrl"),
            "webhookSecret": credential_status((n8n or {}).get("webhookSecret")),
        },
    }


@router.post("/config/{service}")
async def save_config(
    service: str,
    config: Dict[str, Any],
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Replace one service's config object"""
    if not config:
        raise HTTPException(status_code=400, detail="Missing config data")

    try:
        save_tenant_config(db, tenant.id, service, config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_event(
        db,
        tenant.id,
        EventType.SUCCESS,
        "Configuration Updated",
        EventSource.SYSTEM,
        description=f"{service} configuration updated",
        metadata={"service": service.lower()}
    )
    return {"success": True, "message": "Configuration saved successfully"}

"""
Facebook Conversions API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
import logging
import uuid

import httpx

from leadsync.core.database import get_db
from leadsync.core.errors import IntegrationError, LeadEventConflict
from leadsync.core.http import get_http_client
from leadsync.core.tenancy import get_current_tenant, get_current_user
from leadsync.models.lead import LeadEvent
from leadsync.models.tenant import Tenant
from leadsync.services.facebook_client import FacebookClient, UserData, get_facebook_config
from leadsync.services.kommo_client import kommo_client_for
from leadsync.services.lead_pipeline import get_lead_events, send_offline_event, sweep_unsent

logger = logging.getLogger(__name__)

# Operator endpoints: bearer token of a user of the resolved company
router = APIRouter(dependencies=[Depends(get_current_user)])


class SendEventRequest(BaseModel):
    leadId: str
    eventName: str
    userData: UserData
    leadEventId: Optional[uuid.UUID] = None


class LeadEventResponse(BaseModel):
    id: uuid.UUID
    leadId: str
    eventType: str
    sentToFacebook: bool
    errorMessage: Optional[str]
    createdAt: datetime
    sentAt: Optional[datetime]

    @classmethod
    def from_event(cls, event: LeadEvent) -> "LeadEventResponse":
        return cls(
            id=event.id,
            leadId=event.lead_id,
            eventType=event.event_type,
            sentToFacebook=event.sent_to_facebook,
            errorMessage=event.error_message,
            createdAt=event.created_at,
            sentAt=event.sent_at,
        )


@router.post("/send-event")
async def send_event(
    request: SendEventRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Send one offline conversion event immediately"""
    try:
        return await send_offline_event(
            db,
            tenant.id,
            request.leadId,
            request.eventName,
            user_data=request.userData,
            lead_event_id=request.leadEventId,
            http_client=http_client
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LeadEventConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IntegrationError as e:
        raise HTTPException(status_code=500, detail=f"Error sending Facebook event: {e}")


@router.post("/process-unsent")
async def process_unsent(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Retry every undelivered lead event of the tenant"""
    kommo = kommo_client_for(db, tenant.id, http_client=http_client)

    async def lookup_contact(event: LeadEvent) -> UserData:
        return await kommo.get_lead_contact(event.lead_id)

    return await sweep_unsent(
        db,
        tenant_id=tenant.id,
        http_client=http_client,
        contact_lookup=lookup_contact if kommo is not None else None
    )


@router.get("/token-status")
async def token_status(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Validity and expiry of the tenant's access token"""
    client = FacebookClient(get_facebook_config(db, tenant.id), http_client=http_client)
    return await client.check_token_status()


@router.get("/lead-events", response_model=List[LeadEventResponse])
async def list_lead_events(
    leadId: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Lead events with their delivery state, newest first"""
    events = get_lead_events(db, tenant.id, lead_id=leadId, limit=limit)
    return [LeadEventResponse.from_event(event) for event in events]

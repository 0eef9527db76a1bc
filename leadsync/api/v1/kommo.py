"""
Kommo integration endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session
from pydantic import BaseModel, ValidationError
from typing import Optional
import logging

import httpx

from leadsync.core.database import get_db
from leadsync.core.errors import IntegrationError
from leadsync.core.http import get_http_client
from leadsync.core.tenancy import get_current_tenant
from leadsync.models.tenant import Tenant
from leadsync.services.kommo_client import kommo_client_for
from leadsync.services.kommo_webhook import KommoWebhookPayload, normalize_form_payload, process_kommo_webhook
from leadsync.services.utm_service import capture_utm

logger = logging.getLogger(__name__)

router = APIRouter()


class CaptureUtmRequest(BaseModel):
    leadId: str
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None


@router.post("/webhook")
async def kommo_webhook(
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Stage-change webhook (called by Kommo)

    Accepts Kommo's form-encoded payload or the equivalent JSON document.
    """
    content_type = request.headers.get("content-type", "")
    try:
        if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            form = await request.form()
            payload = normalize_form_payload(dict(form))
        else:
            payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook body")

    try:
        webhook = KommoWebhookPayload.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    try:
        return process_kommo_webhook(db, tenant.id, webhook)
    except IntegrationError as e:
        raise HTTPException(status_code=500, detail=f"Error handling Kommo webhook: {e}")


@router.post("/capture-utm")
async def capture_utm_parameters(
    request: CaptureUtmRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Store a lead's UTM parameters (first capture wins) and mirror them to Kommo"""
    params = {
        "source": request.utm_source,
        "medium": request.utm_medium,
        "campaign": request.utm_campaign,
        "content": request.utm_content,
        "term": request.utm_term,
    }

    try:
        utm, created = await capture_utm(
            db,
            tenant.id,
            request.leadId,
            params,
            kommo=kommo_client_for(db, tenant.id, http_client=http_client)
        )
    except IntegrationError as e:
        raise HTTPException(status_code=500, detail=f"Error capturing UTM parameters: {e}")

    return {
        "success": True,
        "leadId": request.leadId,
        "created": created,
        "message": "UTM parameters captured and saved successfully" if created
        else "UTM parameters already exist for this lead",
        "utmData": {
            "leadId": utm.lead_id,
            "source": utm.source,
            "medium": utm.medium,
            "campaign": utm.campaign,
            "content": utm.content,
            "term": utm.term,
            "createdAt": utm.created_at,
        },
    }

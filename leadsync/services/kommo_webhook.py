"""
Kommo stage-change webhook handling
"""
import logging
import re
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional, Union
import uuid

from pydantic import BaseModel

from leadsync.core.errors import ConfigurationMissing, IntegrationError
from leadsync.models.audit import EventType, EventSource
from leadsync.models.lead import LeadEventType
from leadsync.services.audit_service import log_event
from leadsync.services.kommo_client import get_kommo_config
from leadsync.services.lead_pipeline import capture_lead_event

logger = logging.getLogger(__name__)

_TRACKED_TYPES = {event_type.value for event_type in LeadEventType}
_FORM_KEY = re.compile(r"^leads\[(\w+)\]\[(\d+)\]\[(\w+)\]$")


class KommoLead(BaseModel):
    id: Union[int, str]
    name: Optional[str] = None


class KommoStatus(BaseModel):
    lead_id: Union[int, str]
    status_id: Union[int, str]
    pipeline_id: Optional[Union[int, str]] = None


class KommoWebhookPayload(BaseModel):
    """Stage-change webhook body; unknown Kommo fields are ignored"""
    leads: List[KommoLead] = []
    leads_status: List[KommoStatus] = []


def normalize_form_payload(form: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Kommo posts form fields like ``leads[status][0][id]=42``. Convert them to
    ``{"leads": [{"id": "42", ...}], "leads_status": [{"lead_id": "42", "status_id": ...}]}``.
    """
    grouped: Dict[str, Dict[int, Dict[str, Any]]] = {}
    for key, value in form.items():
        match = _FORM_KEY.match(key)
        if not match:
            continue
        action, index, field = match.groups()
        grouped.setdefault(action, {}).setdefault(int(index), {})[field] = value

    leads: List[Dict[str, Any]] = []
    statuses: List[Dict[str, Any]] = []
    for action, items in grouped.items():
        for _, item in sorted(items.items()):
            if "id" not in item:
                continue
            leads.append(item)
            if action == "status" and "status_id" in item:
                statuses.append({
                    "lead_id": item["id"],
                    "status_id": item["status_id"],
                    "pipeline_id": item.get("pipeline_id"),
                })

    return {"leads": leads, "leads_status": statuses}


def classify_stage(stage_ids: Dict[str, str], status_id: Any) -> Optional[str]:
    """Tracked event type for a Kommo status id, or None"""
    for stage, configured_id in stage_ids.items():
        if str(configured_id) == str(status_id):
            event_type = f"lead_{stage}"
            if event_type in _TRACKED_TYPES:
                return event_type
            logger.info("Stage %s is configured but not a tracked event type", stage)
            return None
    return None


def process_kommo_webhook(db: Session, tenant_id: uuid.UUID, payload: KommoWebhookPayload) -> Dict[str, Any]:
    """
    Create a lead event for every lead whose new status maps to a tracked stage.

    Raises ConfigurationMissing when the tenant has no stage ids; the failure
    is recorded in the activity log before it propagates.
    """
    try:
        config = get_kommo_config(db, tenant_id)
        if not config.stage_ids:
            raise ConfigurationMissing("Kommo stage IDs not configured", provider="Kommo")

        leads = payload.leads
        statuses = payload.leads_status
        if not leads or not statuses:
            return {"success": False, "message": "No lead information in webhook data"}

        captured = 0
        for lead in leads:
            lead_id = str(lead.id)
            if not lead_id:
                continue

            status_change = next(
                (status for status in statuses if str(status.lead_id) == lead_id),
                None
            )
            if status_change is None:
                continue

            stage_id = str(status_change.status_id)
            event_type = classify_stage(config.stage_ids, stage_id)
            if event_type is None:
                logger.info("No matching event type for stage ID %s", stage_id, extra={"lead_id": lead_id})
                continue

            capture_lead_event(db, tenant_id, lead_id, event_type)
            captured += 1

            log_event(
                db,
                tenant_id,
                EventType.SUCCESS,
                "Lead Status Changed",
                EventSource.KOMMO,
                description=f"Lead {lead.name or lead_id} moved to {event_type[len('lead_'):]} stage",
                metadata={"leadId": lead_id, "eventType": event_type, "stageId": stage_id}
            )
    except IntegrationError as e:
        logger.error("Error handling Kommo webhook: %s", e, extra={"tenant_id": str(tenant_id), "error": str(e)})
        log_event(
            db,
            tenant_id,
            EventType.ERROR,
            "Webhook Processing Failed",
            EventSource.KOMMO,
            description=f"Failed to process Kommo webhook: {e}",
            metadata={"error": str(e)}
        )
        raise

    return {
        "success": True,
        "message": "Webhook processed successfully",
        "data": {"processedLeads": len(leads), "capturedEvents": captured},
    }

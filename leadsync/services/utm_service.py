"""
UTM attribution capture (first write wins)
"""
import logging
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from typing import Optional, Dict, Any, Tuple
import uuid

from leadsync.core.errors import IntegrationError
from leadsync.models.audit import EventType, EventSource
from leadsync.models.lead import UtmData
from leadsync.services.audit_service import log_event
from leadsync.services.kommo_client import KommoClient, build_utm_custom_fields

logger = logging.getLogger(__name__)

UTM_FIELDS = ("source", "medium", "campaign", "content", "term")


def get_utm_for_lead(db: Session, tenant_id: uuid.UUID, lead_id: str) -> Optional[UtmData]:
    return db.query(UtmData).filter(
        UtmData.tenant_id == tenant_id,
        UtmData.lead_id == lead_id
    ).first()


async def capture_utm(
    db: Session,
    tenant_id: uuid.UUID,
    lead_id: str,
    params: Dict[str, Optional[str]],
    kommo: Optional[KommoClient] = None
) -> Tuple[UtmData, bool]:
    """
    Store UTM parameters for a lead and mirror them to Kommo custom fields.

    Returns (record, created). When the lead already has a record it is
    returned unchanged with created=False and nothing is pushed.
    """
    existing = get_utm_for_lead(db, tenant_id, lead_id)
    if existing:
        return existing, False

    utm = UtmData(
        tenant_id=tenant_id,
        lead_id=lead_id,
        **{field: (params.get(field) or None) for field in UTM_FIELDS}
    )
    db.add(utm)
    db.commit()
    db.refresh(utm)

    log_event(
        db,
        tenant_id,
        EventType.SUCCESS,
        "UTM Parameters Captured",
        EventSource.KOMMO,
        description=f"UTM parameters saved for lead {lead_id}",
        metadata={"leadId": lead_id, "utmParams": params}
    )

    custom_fields = build_utm_custom_fields(params)
    if kommo is not None and custom_fields:
        try:
            await kommo.update_lead_custom_fields(lead_id, custom_fields)
        except IntegrationError as e:
            logger.error("Error pushing UTM parameters for lead %s: %s", lead_id, e, extra={"lead_id": lead_id})
            log_event(
                db,
                tenant_id,
                EventType.ERROR,
                "UTM Capture Failed",
                EventSource.KOMMO,
                description=f"Failed to save UTM parameters for lead {lead_id}",
                metadata={"leadId": lead_id, "utmParams": params, "error": str(e)}
            )
            raise

    return utm, True


def get_utm_stats(db: Session, tenant_id: uuid.UUID) -> Dict[str, Any]:
    """Share of captured leads that carry any attribution"""
    total = db.query(func.count(UtmData.id)).filter(UtmData.tenant_id == tenant_id).scalar() or 0
    with_utm = db.query(func.count(UtmData.id)).filter(
        UtmData.tenant_id == tenant_id,
        or_(*[getattr(UtmData, field).isnot(None) for field in UTM_FIELDS])
    ).scalar() or 0

    percentage = round(with_utm / total * 100) if total > 0 else 0
    return {"total": total, "withUtm": with_utm, "percentage": percentage}

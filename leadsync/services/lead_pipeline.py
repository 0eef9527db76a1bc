"""
Lead event pipeline - capture, delivery to Facebook and retry sweep

Every LeadEvent is in one of three states:

    Created    sent_to_facebook=False, error_message=None
    Delivered  sent_to_facebook=True,  sent_at set, error_message=None (terminal)
    Failed     sent_to_facebook=False, error_message set (retried by the sweep)

Delivery performs exactly one outbound request; the sweep is the only retry
mechanism and must be scheduled externally. There is no claim step, so two
overlapping sweeps may both deliver the same event and the later state write
wins. Delivery is at-least-once.
"""
import logging
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Callable, Awaitable
import uuid

import httpx

from leadsync.core.errors import IntegrationError, LeadEventConflict
from leadsync.models.audit import EventType, EventSource
from leadsync.models.lead import LeadEvent, LeadEventType
from leadsync.services.audit_service import log_event
from leadsync.services.facebook_client import (
    FacebookClient,
    UserData,
    build_event_payload,
    get_facebook_config,
    require_credentials,
)
from leadsync.services.utm_service import get_utm_for_lead

logger = logging.getLogger(__name__)

ContactLookup = Callable[[LeadEvent], Awaitable[Optional[UserData]]]


def normalize_event_type(stage: str) -> str:
    """
    Map a Kommo stage key ("ganho") or full type ("lead_ganho") to a tracked
    event type. Raises ValueError for stages that are not tracked.
    """
    event_type = stage if stage.startswith("lead_") else f"lead_{stage}"
    return LeadEventType(event_type).value


def capture_lead_event(db: Session, tenant_id: uuid.UUID, lead_id: str, stage: str) -> LeadEvent:
    """Record a stage change. Always inserts a new row in Created state."""
    event = LeadEvent(
        tenant_id=tenant_id,
        lead_id=str(lead_id),
        event_type=normalize_event_type(stage),
        sent_to_facebook=False,
        error_message=None,
        sent_at=None
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info(
        "Lead event captured: %s for lead %s",
        event.event_type,
        event.lead_id,
        extra={"tenant_id": str(tenant_id), "lead_id": event.lead_id, "event_type": event.event_type}
    )
    return event


def get_lead_event(db: Session, tenant_id: uuid.UUID, lead_event_id: uuid.UUID) -> Optional[LeadEvent]:
    return db.query(LeadEvent).filter(
        LeadEvent.tenant_id == tenant_id,
        LeadEvent.id == lead_event_id
    ).first()


def get_lead_events(
    db: Session,
    tenant_id: uuid.UUID,
    lead_id: Optional[str] = None,
    limit: Optional[int] = None
) -> List[LeadEvent]:
    """Newest first"""
    query = db.query(LeadEvent).filter(LeadEvent.tenant_id == tenant_id)
    if lead_id is not None:
        query = query.filter(LeadEvent.lead_id == lead_id)
    query = query.order_by(LeadEvent.created_at.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_unsent_lead_events(db: Session, tenant_id: Optional[uuid.UUID] = None) -> List[LeadEvent]:
    """Created and Failed events, oldest first"""
    query = db.query(LeadEvent).filter(LeadEvent.sent_to_facebook.is_(False))
    if tenant_id is not None:
        query = query.filter(LeadEvent.tenant_id == tenant_id)
    return query.order_by(LeadEvent.created_at.asc()).all()


def find_pending_event(
    db: Session,
    tenant_id: uuid.UUID,
    lead_id: str,
    event_name: str
) -> Optional[LeadEvent]:
    """Oldest unsent event of the lead whose type contains event_name"""
    for event in get_unsent_lead_events(db, tenant_id):
        if event.lead_id == lead_id and event_name in event.event_type:
            return event
    return None


async def _deliver(
    db: Session,
    tenant_id: uuid.UUID,
    lead_id: str,
    event_name: str,
    user_data: Optional[UserData],
    event: Optional[LeadEvent],
    http_client: Optional[httpx.AsyncClient]
) -> Dict[str, Any]:
    log_extra = {
        "tenant_id": str(tenant_id),
        "lead_id": lead_id,
        "lead_event_id": str(event.id) if event else None,
        "event_type": event_name,
    }
    display_name = (user_data.name if user_data else None) or lead_id

    try:
        config = require_credentials(get_facebook_config(db, tenant_id), tenant_id)
        payload = build_event_payload(
            config,
            event_name=event_name,
            lead_id=lead_id,
            user_data=user_data,
            utm=get_utm_for_lead(db, tenant_id, lead_id),
        )
        result = await FacebookClient(config, http_client=http_client).send_event(payload)
    except IntegrationError as e:
        logger.warning("Error sending Facebook event for lead %s: %s", lead_id, e, extra={**log_extra, "error": str(e)})
        if event is not None:
            event.mark_failed(str(e))
            db.commit()
        log_event(
            db,
            tenant_id,
            EventType.ERROR,
            "Event Delivery Failed",
            EventSource.FACEBOOK,
            description=f"Failed to send {event_name} for lead {display_name}",
            metadata={"leadId": lead_id, "eventName": event_name, "error": str(e), "errorKind": e.kind}
        )
        raise

    if event is not None:
        event.mark_sent()
        db.commit()

    log_event(
        db,
        tenant_id,
        EventType.SUCCESS,
        "Event Sent to Facebook",
        EventSource.FACEBOOK,
        description=f"Event {event_name} for lead {display_name}",
        metadata={"leadId": lead_id, "eventName": event_name, "result": result}
    )

    return {
        "success": True,
        "leadEventId": str(event.id) if event is not None else None,
        "eventsReceived": result.get("events_received"),
        "fbtraceId": result.get("fbtrace_id"),
        "message": "Event sent successfully to Facebook",
        "leadId": lead_id,
    }


async def deliver_lead_event(
    db: Session,
    event: LeadEvent,
    http_client: Optional[httpx.AsyncClient] = None,
    user_data: Optional[UserData] = None
) -> Dict[str, Any]:
    """
    Deliver one captured event to Facebook.

    On success the event becomes Delivered; on any IntegrationError it
    becomes Failed with the error's string form, an error audit event is
    written and the error is re-raised.
    """
    return await _deliver(
        db,
        event.tenant_id,
        event.lead_id,
        event.event_type,
        user_data,
        event,
        http_client,
    )


async def send_offline_event(
    db: Session,
    tenant_id: uuid.UUID,
    lead_id: str,
    event_name: str,
    user_data: Optional[UserData] = None,
    lead_event_id: Optional[uuid.UUID] = None,
    http_client: Optional[httpx.AsyncClient] = None
) -> Dict[str, Any]:
    """
    Direct delivery for operator-triggered sends.

    With lead_event_id the row is updated strictly by id: LookupError when it
    does not belong to the tenant, LeadEventConflict when it belongs to another
    lead or is already Delivered. Without it, the oldest pending row of the
    lead whose type contains event_name is updated, if any.
    """
    if lead_event_id is not None:
        event = get_lead_event(db, tenant_id, lead_event_id)
        if event is None:
            raise LookupError(f"Lead event not found: {lead_event_id}")
        if event.lead_id != str(lead_id):
            raise LeadEventConflict(lead_event_id, f"belongs to lead {event.lead_id}, not {lead_id}")
        if event.is_delivered:
            raise LeadEventConflict(lead_event_id, "was already delivered")
    else:
        event = find_pending_event(db, tenant_id, lead_id, event_name)

    return await _deliver(db, tenant_id, lead_id, event_name, user_data, event, http_client)


async def sweep_unsent(
    db: Session,
    tenant_id: Optional[uuid.UUID] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    contact_lookup: Optional[ContactLookup] = None
) -> Dict[str, int]:
    """
    Retry every Created or Failed event, oldest first, one at a time.

    Returns:
        {"processed": int, "success": int, "failed": int}
    """
    events = get_unsent_lead_events(db, tenant_id)
    success = 0
    failed = 0

    for event in events:
        user_data = None
        if contact_lookup is not None:
            try:
                user_data = await contact_lookup(event)
            except Exception as e:
                logger.warning(
                    "Contact lookup failed for lead %s, sending without user data: %s",
                    event.lead_id,
                    e,
                    exc_info=not isinstance(e, IntegrationError),
                    extra={"lead_id": event.lead_id, "error": str(e)}
                )

        try:
            await deliver_lead_event(db, event, http_client=http_client, user_data=user_data)
            success += 1
        except IntegrationError:
            failed += 1

    if events:
        logger.info("Unsent lead events processed: %d sent, %d failed", success, failed)

    return {"processed": len(events), "success": success, "failed": failed}

"""
Integration activity log service
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Union
from leadsync.models.audit import Event, EventType, EventSource
import uuid


def log_event(
    db: Session,
    tenant_id: uuid.UUID,
    event_type: Union[EventType, str],
    title: str,
    source: Union[EventSource, str],
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Event:
    """Append an event to the tenant's activity log"""
    event = Event(
        tenant_id=tenant_id,
        type=EventType(event_type).value,
        title=title,
        description=description,
        source=EventSource(source).value,
        event_metadata=metadata or {}
    )
    db.add(event)
    db.commit()
    return event


def list_events(
    db: Session,
    tenant_id: uuid.UUID,
    limit: int = 20,
    source: Optional[str] = None,
    event_type: Optional[str] = None
) -> List[Event]:
    """Most recent events first"""
    query = db.query(Event).filter(Event.tenant_id == tenant_id)
    if source:
        query = query.filter(Event.source == source)
    if event_type:
        query = query.filter(Event.type == event_type)
    return query.order_by(Event.timestamp.desc()).limit(limit).all()

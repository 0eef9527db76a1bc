"""
Integration activity log model
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime
import uuid
import enum
from leadsync.core.database import Base


class EventType(str, enum.Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EventSource(str, enum.Enum):
    KOMMO = "kommo"
    FACEBOOK = "facebook"
    N8N = "n8n"
    SYSTEM = "system"


class Event(Base):
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    source = Column(String, nullable=False, index=True)
    event_metadata = Column("metadata", JSON, nullable=True)  # "metadata" is reserved on declarative classes
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

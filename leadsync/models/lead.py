"""
Lead event and UTM attribution models
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
import uuid
import enum
from leadsync.core.database import Base


class LeadEventType(str, enum.Enum):
    """Tracked Kommo stages, stored as ``lead_<stage key>``"""
    ATTENDED = "lead_atendido"
    VISITED = "lead_visita_feita"
    WON = "lead_ganho"


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    lead_id = Column(String, nullable=False, index=True)
    event_type = Column(String(32), nullable=False)
    sent_to_facebook = Column(Boolean, nullable=False, default=False, index=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    # Relationships
    tenant = relationship("Tenant", foreign_keys=[tenant_id])

    @property
    def is_delivered(self) -> bool:
        return bool(self.sent_to_facebook)

    def mark_sent(self, sent_at: Optional[datetime] = None):
        self.sent_to_facebook = True
        self.sent_at = sent_at or datetime.utcnow()
        self.error_message = None

    def mark_failed(self, error_message: str) -> bool:
        """Record a delivery failure; a Delivered event is terminal and stays as it is"""
        if self.sent_to_facebook:
            return False
        self.sent_to_facebook = False
        self.sent_at = None
        self.error_message = error_message
        return True


class UtmData(Base):
    __tablename__ = "utm_data"
    __table_args__ = (UniqueConstraint("tenant_id", "lead_id", name="uq_utm_data_tenant_lead"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    lead_id = Column(String, nullable=False)
    source = Column(String, nullable=True)
    medium = Column(String, nullable=True)
    campaign = Column(String, nullable=True)
    content = Column(String, nullable=True)
    term = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", foreign_keys=[tenant_id])

    @property
    def has_attribution(self) -> bool:
        return any([self.source, self.medium, self.campaign, self.content, self.term])

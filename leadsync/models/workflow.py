"""
N8N workflow registry and execution models
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from leadsync.core.database import Base


class WorkflowType(str, enum.Enum):
    WEBHOOK = "webhook"
    TRIGGER = "trigger"
    POLL = "poll"


class WorkflowStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class ExecutionStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


class Workflow(Base):
    __tablename__ = "workflows"
    __table_args__ = (UniqueConstraint("tenant_id", "workflow_id", name="uq_workflows_tenant_workflow"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_id = Column(String, nullable=False)  # file stem under N8N_WORKFLOWS_DIR
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default=WorkflowType.WEBHOOK.value)
    status = Column(String, nullable=False, default=WorkflowStatus.INACTIVE.value)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    executions = relationship("WorkflowExecution", back_populates="workflow")


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_pk = Column(UUID(as_uuid=True), ForeignKey("workflows.id"), nullable=True, index=True)
    workflow_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    finished_at = Column(DateTime, nullable=True)

    # Relationships
    workflow = relationship("Workflow", back_populates="executions")

"""
SQLAlchemy models
"""
from leadsync.models.tenant import Tenant, User
from leadsync.models.lead import LeadEvent, LeadEventType, UtmData
from leadsync.models.setting import Setting
from leadsync.models.audit import Event, EventType, EventSource
from leadsync.models.workflow import Workflow, WorkflowExecution, WorkflowType, WorkflowStatus, ExecutionStatus

__all__ = [
    "Tenant",
    "User",
    "LeadEvent",
    "LeadEventType",
    "UtmData",
    "Setting",
    "Event",
    "EventType",
    "EventSource",
    "Workflow",
    "WorkflowExecution",
    "WorkflowType",
    "WorkflowStatus",
    "ExecutionStatus",
]

"""
N8N workflow registry

Workflow definitions live as ``<workflow_id>.json`` files exported from N8N;
the database records which workflows a tenant uses and every trigger.
"""
import hashlib
import hmac
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session
import uuid

from leadsync.core.config import settings
from leadsync.core.errors import IntegrationError, InvalidSignature, WorkflowNotFound
from leadsync.core.http import with_client
from leadsync.models.audit import EventType, EventSource
from leadsync.models.workflow import Workflow, WorkflowExecution, WorkflowStatus, WorkflowType, ExecutionStatus
from leadsync.services.audit_service import log_event
from leadsync.services.settings_service import get_setting_value, get_tenant_config

logger = logging.getLogger(__name__)

PROVIDER = "N8N"


class N8NConfig(BaseModel):
    base_url: str = settings.N8N_BASE_URL
    webhook_secret: str = ""


def get_n8n_config(db: Session, tenant_id: uuid.UUID) -> N8NConfig:
    n8n_config = get_tenant_config(db, tenant_id, "N8N_CONFIG") or {}
    return N8NConfig(
        base_url=n8n_config.get("baseUrl") or get_setting_value(db, tenant_id, "N8N_BASE_URL") or settings.N8N_BASE_URL,
        webhook_secret=n8n_config.get("webhookSecret") or get_setting_value(db, tenant_id, "N8N_WEBHOOK_SECRET") or "",
    )


def _workflows_dir(workflows_dir: Optional[str] = None) -> Path:
    return Path(workflows_dir or settings.N8N_WORKFLOWS_DIR)


def is_valid_workflow_id(workflow_id: str) -> bool:
    """A bare file stem: no path separators, not hidden"""
    return bool(workflow_id) and "/" not in workflow_id and "\\" not in workflow_id and not workflow_id.startswith(".")


def load_workflow_file(workflow_id: str, workflows_dir: Optional[str] = None) -> Dict[str, Any]:
    """Parsed workflow export; raises WorkflowNotFound for unknown ids"""
    if not is_valid_workflow_id(workflow_id):
        raise WorkflowNotFound(workflow_id)

    path = _workflows_dir(workflows_dir) / f"{workflow_id}.json"
    if not path.is_file():
        raise WorkflowNotFound(workflow_id)

    with path.open(encoding="utf-8") as f:
        return json.load(f)


def get_workflow(db: Session, tenant_id: uuid.UUID, workflow_id: str) -> Optional[Workflow]:
    return db.query(Workflow).filter(
        Workflow.tenant_id == tenant_id,
        Workflow.workflow_id == workflow_id
    ).first()


def register_workflow(
    db: Session,
    tenant_id: uuid.UUID,
    workflow_id: str,
    name: str,
    workflow_type: str = WorkflowType.WEBHOOK.value,
    status: str = WorkflowStatus.INACTIVE.value,
    config: Optional[Dict[str, Any]] = None
) -> Workflow:
    """Create or update a tenant's workflow entry"""
    if not is_valid_workflow_id(workflow_id):
        raise ValueError(f"Invalid workflow id: {workflow_id!r}")
    workflow_type = WorkflowType(workflow_type).value
    status = WorkflowStatus(status).value
    workflow = get_workflow(db, tenant_id, workflow_id)
    if workflow is None:
        workflow = Workflow(tenant_id=tenant_id, workflow_id=workflow_id)
        db.add(workflow)
    workflow.name = name
    workflow.type = workflow_type
    workflow.status = status
    workflow.config = config or {}
    db.commit()
    db.refresh(workflow)
    return workflow


def list_workflows(db: Session, tenant_id: uuid.UUID, workflows_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Registered workflows merged with their file definitions"""
    workflows = db.query(Workflow).filter(Workflow.tenant_id == tenant_id).order_by(Workflow.name).all()

    results = []
    for workflow in workflows:
        item = {
            "id": str(workflow.id),
            "workflowId": workflow.workflow_id,
            "name": workflow.name,
            "type": workflow.type,
            "status": workflow.status,
            "active": workflow.status == WorkflowStatus.ACTIVE.value,
            "nodes": [],
            "connections": {},
            "createdAt": workflow.created_at,
            "updatedAt": workflow.updated_at,
        }
        try:
            content = load_workflow_file(workflow.workflow_id, workflows_dir)
            item["nodes"] = content.get("nodes") or []
            item["connections"] = content.get("connections") or {}
        except (WorkflowNotFound, ValueError, OSError) as e:
            logger.warning("Error loading workflow %s: %s", workflow.workflow_id, e, extra={"workflow_id": workflow.workflow_id})
            item["error"] = str(e)
        results.append(item)

    return results


def get_workflow_webhook_url(config: N8NConfig, workflow_id: str) -> str:
    return f"{config.base_url.rstrip('/')}/webhook/{workflow_id}"


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str, signature: Optional[str], body: bytes) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time"""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


async def trigger_workflow(
    db: Session,
    tenant_id: uuid.UUID,
    workflow_id: str,
    data: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient] = None
) -> WorkflowExecution:
    """
    POST data to the workflow's webhook and record the execution.

    The execution row and an activity event are written for both outcomes;
    IntegrationError is re-raised after recording.
    """
    workflow = get_workflow(db, tenant_id, workflow_id)
    config = get_n8n_config(db, tenant_id)
    body = json.dumps(data).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    if config.webhook_secret:
        headers["X-N8N-Signature"] = sign_payload(config.webhook_secret, body)

    execution = WorkflowExecution(
        tenant_id=tenant_id,
        workflow_pk=workflow.id if workflow else None,
        workflow_id=workflow_id,
        status=ExecutionStatus.SUCCESS.value,
        request_payload=data,
        started_at=datetime.utcnow()
    )

    try:
        result = await with_client(
            http_client,
            "POST",
            get_workflow_webhook_url(config, workflow_id),
            PROVIDER,
            content=body,
            headers=headers,
        )
    except IntegrationError as e:
        execution.status = ExecutionStatus.ERROR.value
        execution.error_message = str(e)
        execution.finished_at = datetime.utcnow()
        db.add(execution)
        db.commit()
        logger.error("Error triggering workflow %s: %s", workflow_id, e, extra={"workflow_id": workflow_id, "error": str(e)})
        log_event(
            db,
            tenant_id,
            EventType.ERROR,
            "Workflow Trigger Failed",
            EventSource.N8N,
            description=f"Failed to trigger workflow {workflow_id}",
            metadata={"workflowId": workflow_id, "error": str(e)}
        )
        raise

    execution.response_payload = result
    execution.finished_at = datetime.utcnow()
    db.add(execution)
    db.commit()
    db.refresh(execution)

    log_event(
        db,
        tenant_id,
        EventType.SUCCESS,
        "Workflow Triggered",
        EventSource.N8N,
        description=f"Workflow {workflow.name if workflow else workflow_id} triggered",
        metadata={"workflowId": workflow_id, "executionId": str(execution.id)}
    )
    return execution


def get_latest_execution(db: Session, tenant_id: uuid.UUID, workflow_id: str) -> Optional[WorkflowExecution]:
    return db.query(WorkflowExecution).filter(
        WorkflowExecution.tenant_id == tenant_id,
        WorkflowExecution.workflow_id == workflow_id
    ).order_by(WorkflowExecution.started_at.desc()).first()


class WorkflowCallback(BaseModel):
    """Result reported back by a workflow run"""
    executionId: Optional[uuid.UUID] = None
    status: ExecutionStatus
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def verify_callback(db: Session, tenant_id: uuid.UUID, signature: Optional[str], body: bytes) -> None:
    """Raises InvalidSignature unless body carries the tenant's N8N signature"""
    config = get_n8n_config(db, tenant_id)
    if not verify_webhook_signature(config.webhook_secret, signature, body):
        raise InvalidSignature("Invalid or missing X-N8N-Signature")


def record_callback(
    db: Session,
    tenant_id: uuid.UUID,
    workflow_id: str,
    callback: WorkflowCallback
) -> WorkflowExecution:
    """
    Store the outcome of a workflow run.

    Completes the referenced execution when executionId names one of this
    tenant's executions of the workflow; otherwise records a new execution
    (a run N8N started on its own).
    """
    execution = None
    if callback.executionId is not None:
        execution = db.query(WorkflowExecution).filter(
            WorkflowExecution.tenant_id == tenant_id,
            WorkflowExecution.workflow_id == workflow_id,
            WorkflowExecution.id == callback.executionId
        ).first()

    if execution is None:
        workflow = get_workflow(db, tenant_id, workflow_id)
        execution = WorkflowExecution(
            tenant_id=tenant_id,
            workflow_pk=workflow.id if workflow else None,
            workflow_id=workflow_id,
            started_at=datetime.utcnow()
        )
        db.add(execution)

    execution.status = callback.status.value
    execution.response_payload = callback.data
    execution.error_message = callback.error
    execution.finished_at = datetime.utcnow()
    db.commit()
    db.refresh(execution)

    failed = callback.status == ExecutionStatus.ERROR
    log_event(
        db,
        tenant_id,
        EventType.ERROR if failed else EventType.INFO,
        "Workflow Run Failed" if failed else "Workflow Run Completed",
        EventSource.N8N,
        description=f"Workflow {workflow_id} reported {callback.status.value}",
        metadata={"workflowId": workflow_id, "executionId": str(execution.id), "error": callback.error}
    )
    return execution

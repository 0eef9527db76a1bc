"""
N8N workflow endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session
from pydantic import BaseModel, ValidationError
from typing import Dict, Any, Optional
import logging

import httpx

from leadsync.core.database import get_db
from leadsync.core.errors import IntegrationError, InvalidSignature, WorkflowNotFound
from leadsync.core.http import get_http_client
from leadsync.core.tenancy import get_current_tenant, get_current_user
from leadsync.models.tenant import Tenant
from leadsync.models.workflow import WorkflowStatus, WorkflowType
from leadsync.services.workflow_registry import (
    WorkflowCallback,
    get_latest_execution,
    list_workflows,
    load_workflow_file,
    record_callback,
    register_workflow,
    trigger_workflow,
    verify_callback,
)

logger = logging.getLogger(__name__)

# Operator endpoints: bearer token of a user of the resolved company
router = APIRouter(dependencies=[Depends(get_current_user)])

# Called by N8N itself, authenticated by X-N8N-Signature
callback_router = APIRouter()


class RegisterWorkflowRequest(BaseModel):
    name: str
    type: WorkflowType = WorkflowType.WEBHOOK
    status: WorkflowStatus = WorkflowStatus.INACTIVE
    config: Dict[str, Any] = {}


def _execution_payload(execution) -> Dict[str, Any]:
    return {
        "id": str(execution.id),
        "workflowId": execution.workflow_id,
        "status": execution.status,
        "startedAt": execution.started_at,
        "finishedAt": execution.finished_at,
        "error": execution.error_message,
        "response": execution.response_payload,
    }


@router.get("/workflows")
async def get_workflows(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return list_workflows(db, tenant.id)


@router.get("/workflow/{workflow_id}")
async def get_workflow_file(workflow_id: str, tenant: Tenant = Depends(get_current_tenant)):
    """Raw workflow export"""
    try:
        return load_workflow_file(workflow_id)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")


@router.post("/workflows/{workflow_id}/trigger")
async def trigger(
    workflow_id: str,
    data: Optional[Dict[str, Any]] = None,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    try:
        execution = await trigger_workflow(db, tenant.id, workflow_id, data or {}, http_client=http_client)
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=f"Error triggering workflow: {e}")
    return _execution_payload(execution)


@router.get("/workflows/{workflow_id}/executions/latest")
async def latest_execution(
    workflow_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    execution = get_latest_execution(db, tenant.id, workflow_id)
    if not execution:
        raise HTTPException(status_code=404, detail="No executions recorded for this workflow")
    return _execution_payload(execution)


@router.put("/workflows/{workflow_id}")
async def register(
    workflow_id: str,
    request: RegisterWorkflowRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Create or update the tenant's entry for a workflow"""
    try:
        workflow = register_workflow(
            db,
            tenant.id,
            workflow_id,
            request.name,
            workflow_type=request.type.value,
            status=request.status.value,
            config=request.config
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "id": str(workflow.id),
        "workflowId": workflow.workflow_id,
        "name": workflow.name,
        "type": workflow.type,
        "status": workflow.status,
        "config": workflow.config,
    }


@callback_router.post("/callback/{workflow_id}")
async def workflow_callback(
    workflow_id: str,
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Run result posted by N8N, signed with the tenant's webhook secret"""
    body = await request.body()
    try:
        verify_callback(db, tenant.id, request.headers.get("x-n8n-signature"), body)
    except InvalidSignature as e:
        logger.warning("Rejected N8N callback for %s: %s", workflow_id, e, extra={"workflow_id": workflow_id})
        raise HTTPException(status_code=401, detail=str(e))

    try:
        callback = WorkflowCallback.model_validate_json(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    execution = record_callback(db, tenant.id, workflow_id, callback)
    return _execution_payload(execution)

"""
Authentication endpoints (public, tenant taken from the subdomain)
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel
import logging
import uuid

from leadsync.core.database import get_db
from leadsync.core.security import create_access_token, decode_access_token
from leadsync.core.tenancy import extract_subdomain
from leadsync.services.tenant_service import (
    authenticate_user,
    get_tenant,
    get_user,
    resolve_tenant_by_subdomain,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequest(BaseModel):
    username: str
    password: str


def _user_payload(user):
    return {"id": str(user.id), "username": user.username, "companyId": str(user.tenant_id)}


def _company_payload(tenant):
    return {"id": str(tenant.id), "name": tenant.name, "subdomain": tenant.subdomain}


@router.post("/login")
async def login(
    request: LoginRequest,
    http_request: Request,
    db: Session = Depends(get_db)
):
    """Exchange username and password for a bearer token"""
    subdomain = extract_subdomain(http_request)
    if not subdomain:
        raise HTTPException(status_code=400, detail="Subdomain is required")

    tenant = resolve_tenant_by_subdomain(db, subdomain)
    if not tenant:
        raise HTTPException(status_code=404, detail="Company not found")

    user = authenticate_user(db, tenant, request.username, request.password)
    if not user:
        logger.info("Failed login for %s on %s", request.username, subdomain)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return {
        "token": create_access_token(user.id, tenant.id),
        "user": _user_payload(user),
        "company": _company_payload(tenant),
    }


@router.get("/validate")
async def validate(http_request: Request, db: Session = Depends(get_db)):
    """Check a bearer token and return its user and company"""
    auth_header = http_request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided")

    claims = decode_access_token(auth_header[len("Bearer "):])
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user = get_user(db, uuid.UUID(claims.get("sub", "")))
        tenant = get_tenant(db, uuid.UUID(claims.get("tenant_id", "")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not user or not tenant or user.tenant_id != tenant.id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return {"valid": True, "user": _user_payload(user), "company": _company_payload(tenant)}

"""
Tenant resolution for incoming requests
"""
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
import uuid

from leadsync.core.database import get_db
from leadsync.core.security import decode_access_token
from leadsync.models.tenant import Tenant, User
from leadsync.services.tenant_service import get_user, resolve_tenant_by_subdomain

_DEV_HOSTS = ("localhost", "127.0.0.1", "testserver")


def extract_subdomain(request: Request) -> str:
    """
    Subdomain of the request

    Development hosts take it from ``?subdomain=`` or ``X-Subdomain``;
    otherwise it is the first label of a host with more than two labels.
    """
    host = (request.headers.get("host") or "").split(":")[0].lower()

    if not host or any(dev_host in host for dev_host in _DEV_HOSTS):
        return request.query_params.get("subdomain") or request.headers.get("x-subdomain") or ""

    parts = host.split(".")
    if len(parts) > 2:
        return parts[0]
    return request.headers.get("x-subdomain") or ""


def get_current_tenant(request: Request, db: Session = Depends(get_db)) -> Tenant:
    subdomain = extract_subdomain(request)
    if not subdomain:
        raise HTTPException(status_code=400, detail="Subdomain not provided")

    tenant = resolve_tenant_by_subdomain(db, subdomain)
    if not tenant:
        raise HTTPException(status_code=404, detail="Company not found")
    return tenant


def get_current_user(
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
) -> User:
    """
    User of the bearer token, who must belong to the request's tenant

    401 without a valid token, 403 when the user belongs to another company.
    """
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    claims = decode_access_token(auth_header[len("Bearer "):])
    if not claims:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        user = get_user(db, uuid.UUID(claims.get("sub", "")))
    except ValueError:
        user = None
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    if user.tenant_id != tenant.id:
        raise HTTPException(status_code=403, detail="Access denied - user does not belong to this company")
    return user

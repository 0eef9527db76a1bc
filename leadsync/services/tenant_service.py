"""
Tenant resolution and user accounts
"""
from sqlalchemy.orm import Session
from typing import Optional
import uuid

from leadsync.core.security import hash_password, verify_password
from leadsync.models.tenant import Tenant, User


def resolve_tenant_by_subdomain(db: Session, subdomain: str) -> Optional[Tenant]:
    """
    Resolve tenant by subdomain

    Matching is case-insensitive; an unknown subdomain returns None.
    """
    if not subdomain:
        return None
    return db.query(Tenant).filter(Tenant.subdomain == subdomain.strip().lower()).first()


def get_tenant(db: Session, tenant_id: uuid.UUID) -> Optional[Tenant]:
    return db.query(Tenant).filter(Tenant.id == tenant_id).first()


def get_or_create_tenant(db: Session, name: str, subdomain: str) -> Tenant:
    """Get or create a tenant by subdomain (idempotent)"""
    tenant = resolve_tenant_by_subdomain(db, subdomain)
    if not tenant:
        tenant = Tenant(name=name, subdomain=subdomain.strip().lower())
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
    return tenant


def create_user(db: Session, tenant_id: uuid.UUID, username: str, password: str) -> User:
    user = User(
        tenant_id=tenant_id,
        username=username,
        password_hash=hash_password(password)
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def authenticate_user(db: Session, tenant: Tenant, username: str, password: str) -> Optional[User]:
    """Return the tenant's user when the password matches, else None"""
    user = db.query(User).filter(
        User.tenant_id == tenant.id,
        User.username == username
    ).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user

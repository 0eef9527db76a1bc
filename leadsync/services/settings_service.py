"""
Tenant configuration store

Settings are key/value rows scoped by tenant. Writes always replace the whole
value. Flat credential keys hold strings, the per-service ``*_CONFIG`` keys
hold JSON objects.
"""
import logging
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List
import uuid

from leadsync.models.setting import Setting

logger = logging.getLogger(__name__)


CREDENTIAL_KEYS = [
    "KOMMO_API_TOKEN",
    "KOMMO_ACCOUNT_ID",
    "KOMMO_PIPELINE_ID",
    "FACEBOOK_ACCESS_TOKEN",
    "FACEBOOK_PIXEL_ID",
    "FACEBOOK_APP_ID",
    "FACEBOOK_APP_SECRET",
    "N8N_WEBHOOK_SECRET",
]

SERVICE_CONFIG_KEYS = {
    "kommo": "KOMMO_CONFIG",
    "facebook": "FACEBOOK_CONFIG",
    "n8n": "N8N_CONFIG",
}


def is_secret_key(key: str) -> bool:
    return "TOKEN" in key or "SECRET" in key


def credential_status(value: Any) -> str:
    """'set' or 'missing' for display; never exposes the value"""
    if value is None:
        return "missing"
    if isinstance(value, str):
        return "set" if value.strip() else "missing"
    if isinstance(value, (dict, list)):
        return "set" if len(value) > 0 else "missing"
    return "set"


def get_setting(db: Session, tenant_id: uuid.UUID, key: str) -> Optional[Setting]:
    return db.query(Setting).filter(
        Setting.tenant_id == tenant_id,
        Setting.key == key
    ).first()


def get_setting_value(db: Session, tenant_id: uuid.UUID, key: str, default: Any = None) -> Any:
    setting = get_setting(db, tenant_id, key)
    if setting is None or setting.value is None:
        return default
    return setting.value


def list_settings(db: Session, tenant_id: uuid.UUID) -> List[Setting]:
    return db.query(Setting).filter(Setting.tenant_id == tenant_id).order_by(Setting.key).all()


def set_setting(db: Session, tenant_id: uuid.UUID, key: str, value: Any) -> Setting:
    """Create or replace a setting value"""
    setting = get_setting(db, tenant_id, key)
    if setting is None:
        setting = Setting(
            tenant_id=tenant_id,
            key=key,
            value=value,
            is_secret=is_secret_key(key)
        )
        db.add(setting)
    else:
        setting.value = value
    db.commit()
    db.refresh(setting)
    return setting


def get_api_credentials(db: Session, tenant_id: uuid.UUID) -> Dict[str, Any]:
    """All settings of a tenant as a flat key -> value map"""
    return {setting.key: setting.value for setting in list_settings(db, tenant_id)}


def get_tenant_config(db: Session, tenant_id: uuid.UUID, config_key: str) -> Optional[Dict[str, Any]]:
    """Service config object, or None when absent or empty"""
    value = get_setting_value(db, tenant_id, config_key)
    if not value or not isinstance(value, dict):
        return None
    return value


def save_tenant_config(
    db: Session,
    tenant_id: uuid.UUID,
    service: str,
    config: Dict[str, Any]
) -> Setting:
    """Replace the config object of one service (kommo, facebook, n8n)"""
    config_key = SERVICE_CONFIG_KEYS.get(service.lower())
    if config_key is None:
        raise ValueError(f"Invalid service specified: {service}")
    return set_setting(db, tenant_id, config_key, config)


def import_legacy_tenant_map(db: Session, config_key: str, nested: Dict[str, Any]) -> int:
    """
    Split a legacy ``{tenant_id: value}`` blob into per-tenant rows.

    Entries whose key is not a UUID are skipped. Returns the number of rows
    written.
    """
    written = 0
    for raw_tenant_id, value in (nested or {}).items():
        try:
            tenant_id = uuid.UUID(str(raw_tenant_id))
        except ValueError:
            logger.warning("Skipping legacy %s entry with invalid tenant id %r", config_key, raw_tenant_id)
            continue
        set_setting(db, tenant_id, config_key, value)
        written += 1
    return written

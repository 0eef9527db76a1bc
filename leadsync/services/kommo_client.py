"""
Kommo CRM adapter
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session
import uuid

from leadsync.core.config import settings
from leadsync.core.errors import ConfigurationMissing, MalformedResponse
from leadsync.core.http import with_client
from leadsync.services.facebook_client import UserData
from leadsync.services.settings_service import get_api_credentials, get_tenant_config

logger = logging.getLogger(__name__)

PROVIDER = "Kommo"

# Custom fields created in the Kommo account for UTM attribution
UTM_CUSTOM_FIELD_IDS = {
    "source": 100001,
    "medium": 100002,
    "campaign": 100003,
    "content": 100004,
    "term": 100005,
}


class KommoConfig(BaseModel):
    base_url: str = settings.KOMMO_BASE_URL
    api_token: str = ""
    account_id: str = ""
    pipeline_id: str = ""
    stage_ids: Dict[str, str] = {}


def _parse_stage_ids(raw: Any) -> Dict[str, str]:
    """Stage key -> stage id; accepts a dict or its JSON string form"""
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Could not parse Kommo stage ids: %r", raw)
            return {}
    if not isinstance(raw, dict):
        logger.warning("Kommo stage ids must be an object, got %s", type(raw).__name__)
        return {}
    return {str(stage): str(stage_id) for stage, stage_id in raw.items()}


def get_kommo_config(db: Session, tenant_id: uuid.UUID) -> KommoConfig:
    """KOMMO_CONFIG object, falling back to the flat credential keys"""
    kommo_config = get_tenant_config(db, tenant_id, "KOMMO_CONFIG")
    if kommo_config:
        return KommoConfig(
            api_token=kommo_config.get("apiToken") or "",
            account_id=str(kommo_config.get("accountId") or ""),
            pipeline_id=str(kommo_config.get("pipelineId") or ""),
            stage_ids=_parse_stage_ids(kommo_config.get("stageIds")),
        )

    credentials = get_api_credentials(db, tenant_id)
    if not credentials.get("KOMMO_API_TOKEN"):
        raise ConfigurationMissing(
            f"Kommo configuration not found for company {tenant_id}",
            provider=PROVIDER,
        )

    return KommoConfig(
        api_token=credentials.get("KOMMO_API_TOKEN") or "",
        account_id=str(credentials.get("KOMMO_ACCOUNT_ID") or ""),
        pipeline_id=str(credentials.get("KOMMO_PIPELINE_ID") or ""),
        stage_ids=_parse_stage_ids(credentials.get("KOMMO_STAGE_IDS")),
    )


def _contact_value(lead_id: str, value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise MalformedResponse(f"{PROVIDER} lead {lead_id} has a non-text contact value: {value!r:.100}", provider=PROVIDER)
    return value


def build_utm_custom_fields(params: Dict[str, Optional[str]]) -> List[Dict[str, Any]]:
    """custom_fields_values entries for the non-empty UTM parameters"""
    return [
        {"field_id": field_id, "values": [{"value": params.get(name)}]}
        for name, field_id in UTM_CUSTOM_FIELD_IDS.items()
        if params.get(name)
    ]


class KommoClient:
    """Single-request wrapper around the Kommo v4 REST API"""

    def __init__(self, config: KommoConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.http_client = http_client

    async def request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        if not self.config.api_token:
            raise ConfigurationMissing("Kommo API token not configured", provider=PROVIDER)

        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }
        return await with_client(self.http_client, method, url, PROVIDER, json=payload, headers=headers)

    async def get_lead_details(self, lead_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"api/v4/leads/{lead_id}")

    async def update_lead_custom_fields(self, lead_id: str, custom_fields: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self.request(
            "PATCH",
            f"api/v4/leads/{lead_id}",
            payload={"custom_fields_values": custom_fields},
        )

    async def get_lead_contact(self, lead_id: str) -> UserData:
        """
        Name, email and phone of a lead

        Email and phone come from the lead's custom fields (field codes
        EMAIL / PHONE) when present.
        """
        details = await self.get_lead_details(lead_id)
        if not isinstance(details, dict):
            raise MalformedResponse(f"{PROVIDER} lead {lead_id} is not an object: {details!r:.200}", provider=PROVIDER)

        fields = details.get("custom_fields_values") or []
        if not isinstance(fields, list):
            raise MalformedResponse(f"{PROVIDER} lead {lead_id} has malformed custom fields", provider=PROVIDER)

        contact = {"name": _contact_value(lead_id, details.get("name")), "email": None, "phone": None}
        for field in fields:
            if not isinstance(field, dict):
                raise MalformedResponse(f"{PROVIDER} lead {lead_id} has malformed custom fields", provider=PROVIDER)
            code = str(field.get("field_code") or "").upper()
            values = field.get("values") or []
            if not isinstance(values, list) or not values or not isinstance(values[0], dict):
                continue
            if code == "EMAIL" and not contact["email"]:
                contact["email"] = _contact_value(lead_id, values[0].get("value"))
            elif code == "PHONE" and not contact["phone"]:
                contact["phone"] = _contact_value(lead_id, values[0].get("value"))

        return UserData(**contact)


def kommo_client_for(
    db: Session,
    tenant_id: uuid.UUID,
    http_client: Optional[httpx.AsyncClient] = None
) -> Optional[KommoClient]:
    """Client for the tenant, or None when Kommo is not configured"""
    try:
        config = get_kommo_config(db, tenant_id)
    except ConfigurationMissing:
        return None
    if not config.api_token:
        return None
    return KommoClient(config, http_client=http_client)

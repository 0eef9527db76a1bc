"""
Facebook Conversions API client

Sends offline conversion events for CRM leads. Personally identifying fields
are normalised and SHA-256 hashed before they leave the process.

Docs: https://developers.facebook.com/docs/marketing-api/conversions-api
"""
import hashlib
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session
import uuid

from leadsync.core.config import settings
from leadsync.core.errors import ConfigurationMissing, IntegrationError, MalformedResponse
from leadsync.core.http import with_client
from leadsync.models.lead import UtmData
from leadsync.services.settings_service import get_api_credentials, get_tenant_config

logger = logging.getLogger(__name__)

PROVIDER = "Facebook"
ACTION_SOURCE = "crm"


class UserData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class FacebookConfig(BaseModel):
    access_token: str = ""
    pixel_id: str = ""
    app_id: str = ""
    app_secret: str = ""
    api_version: str = settings.FACEBOOK_API_VERSION


def get_facebook_config(db: Session, tenant_id: uuid.UUID) -> FacebookConfig:
    """FACEBOOK_CONFIG object, falling back to the flat credential keys"""
    fb_config = get_tenant_config(db, tenant_id, "FACEBOOK_CONFIG")
    if fb_config:
        return FacebookConfig(
            access_token=fb_config.get("accessToken") or "",
            pixel_id=str(fb_config.get("pixelId") or ""),
            app_id=str(fb_config.get("appId") or ""),
            app_secret=fb_config.get("appSecret") or "",
        )

    credentials = get_api_credentials(db, tenant_id)
    return FacebookConfig(
        access_token=credentials.get("FACEBOOK_ACCESS_TOKEN") or "",
        pixel_id=str(credentials.get("FACEBOOK_PIXEL_ID") or ""),
        app_id=str(credentials.get("FACEBOOK_APP_ID") or ""),
        app_secret=credentials.get("FACEBOOK_APP_SECRET") or "",
    )


def require_credentials(config: FacebookConfig, tenant_id: uuid.UUID) -> FacebookConfig:
    if not config.access_token or not config.pixel_id:
        raise ConfigurationMissing(
            f"Facebook API credentials not configured for company {tenant_id}",
            provider=PROVIDER,
        )
    return config


# =========================================================================
# Hashing helpers
# =========================================================================

def hash_value(value: Optional[str]) -> str:
    """SHA-256 hex of the trimmed, lowercased value ('' for empty input)"""
    if not value:
        return ""
    normalized = value.strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only"""
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


def format_user_data(user_data: Optional[UserData]) -> Dict[str, str]:
    """Hashed em / ph / fn / ln; absent fields are omitted"""
    formatted: Dict[str, str] = {}
    if user_data is None:
        return formatted

    if user_data.email:
        formatted["em"] = hash_value(user_data.email)

    if user_data.phone:
        formatted["ph"] = hash_value(normalize_phone(user_data.phone))

    if user_data.name:
        name_parts = user_data.name.split()
        if name_parts:
            formatted["fn"] = hash_value(name_parts[0])
        if len(name_parts) > 1:
            formatted["ln"] = hash_value(name_parts[-1])

    return formatted


def build_event_payload(
    config: FacebookConfig,
    event_name: str,
    lead_id: str,
    user_data: Optional[UserData] = None,
    utm: Optional[UtmData] = None,
    event_time: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Request body for POST /{pixel_id}/events"""
    timestamp = int(event_time.timestamp()) if event_time else int(time.time())

    return {
        "data": [
            {
                "event_name": event_name,
                "event_time": timestamp,
                "action_source": ACTION_SOURCE,
                "user_data": format_user_data(user_data),
                "custom_data": {
                    "lead_id": lead_id,
                    "utm_source": (utm.source if utm else None) or "",
                    "utm_medium": (utm.medium if utm else None) or "",
                    "utm_campaign": (utm.campaign if utm else None) or "",
                    "utm_content": (utm.content if utm else None) or "",
                    "utm_term": (utm.term if utm else None) or "",
                },
            }
        ],
        "pixel_id": config.pixel_id,
        "access_token": config.access_token,
    }


class FacebookClient:
    """Stateless wrapper around one tenant's Conversions API credentials"""

    def __init__(self, config: FacebookConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.http_client = http_client
        self.base_url = settings.FACEBOOK_GRAPH_URL.rstrip("/")

    @property
    def events_url(self) -> str:
        return f"{self.base_url}/{self.config.api_version}/{self.config.pixel_id}/events"

    async def send_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post one events payload. Exactly one request, no retry.

        Returns:
            {"events_received": int, "fbtrace_id": str, ...} as sent by Facebook
        """
        result = await with_client(self.http_client, "POST", self.events_url, PROVIDER, json=payload)
        if not isinstance(result, dict):
            raise MalformedResponse(f"{PROVIDER} returned an unexpected response: {result!r}", provider=PROVIDER)

        logger.info(
            "CAPI event sent: %s, events_received: %s",
            payload["data"][0]["event_name"],
            result.get("events_received"),
        )
        return result

    async def check_token_status(self) -> Dict[str, Any]:
        """
        Inspect the access token with debug_token.

        Returns:
            {"valid": bool, "expiresAt": datetime | None, "message": str}
        """
        if not self.config.access_token:
            return {"valid": False, "expiresAt": None, "message": "Facebook access token not configured"}

        try:
            result = await with_client(
                self.http_client,
                "GET",
                f"{self.base_url}/debug_token",
                PROVIDER,
                params={
                    "input_token": self.config.access_token,
                    "access_token": f"{self.config.app_id}|{self.config.app_secret}",
                },
            )
        except IntegrationError as e:
            logger.warning("Error checking Facebook token status: %s", e)
            return {"valid": False, "expiresAt": None, "message": f"Error checking token: {e}"}

        data = (result.get("data") or {}) if isinstance(result, dict) else {}
        if not data.get("is_valid"):
            message = (data.get("error") or {}).get("message") or "Invalid token"
            return {"valid": False, "expiresAt": None, "message": message}

        expires_at = None
        if data.get("expires_at"):
            expires_at = datetime.fromtimestamp(data["expires_at"], timezone.utc).replace(tzinfo=None)

        return {"valid": True, "expiresAt": expires_at, "message": "Token is valid"}

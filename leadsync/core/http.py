"""
Outbound HTTP helpers shared by the Kommo, Facebook and N8N clients
"""
import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from leadsync.core.config import settings
from leadsync.core.errors import MalformedResponse, RemoteRejected, TransportError

logger = logging.getLogger(__name__)


def new_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Request-scoped client dependency"""
    async with new_http_client() as client:
        yield client


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    **kwargs
) -> Any:
    """
    Perform one request and return the decoded JSON body.

    Raises:
        TransportError: no response (network, DNS, timeout)
        RemoteRejected: non-2xx status; the decoded body is attached
        MalformedResponse: 2xx status with a body that is not JSON
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise TransportError(f"{provider} request failed: {e}", provider=provider) from e

    if not response.is_success:
        body = _response_body(response)
        detail = json.dumps(body) if not isinstance(body, str) else body
        raise RemoteRejected(
            f"{provider} API error ({response.status_code}): {detail}",
            status_code=response.status_code,
            body=body,
            provider=provider,
        )

    if not response.content:
        return {}

    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponse(
            f"{provider} returned an unparseable response: {response.text[:200]}",
            provider=provider,
        ) from e


async def with_client(client: Optional[httpx.AsyncClient], method: str, url: str, provider: str, **kwargs) -> Any:
    """request_json on the given client, or on a short-lived one"""
    if client is not None:
        return await request_json(client, method, url, provider, **kwargs)
    async with new_http_client() as own_client:
        return await request_json(own_client, method, url, provider, **kwargs)

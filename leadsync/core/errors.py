"""
Integration error taxonomy

Every failure of an outbound integration call is one of four kinds. The
lead event pipeline stores ``str(error)`` on the failed row regardless of
kind and retries all of them on the next sweep.
"""
from typing import Any, Optional


class IntegrationError(Exception):
    """Base class for Kommo / Facebook / N8N failures."""

    kind = "integration_error"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ConfigurationMissing(IntegrationError):
    """No usable credentials are stored for the tenant."""

    kind = "configuration_missing"


class TransportError(IntegrationError):
    """Network, DNS or timeout failure before a response was received."""

    kind = "transport_error"


class RemoteRejected(IntegrationError):
    """Provider answered with a non-2xx status."""

    kind = "remote_rejected"

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Any = None,
        provider: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, provider=provider)


class MalformedResponse(IntegrationError):
    """Provider answered 2xx but the body could not be parsed."""

    kind = "malformed_response"


class WorkflowNotFound(Exception):
    """Workflow definition is neither registered nor present on disk."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class LeadEventConflict(Exception):
    """Lead event cannot be sent again (already delivered, or another lead's row)."""

    def __init__(self, lead_event_id, reason: str):
        self.lead_event_id = lead_event_id
        self.reason = reason
        super().__init__(f"Lead event {lead_event_id} {reason}")


class InvalidSignature(Exception):
    """Inbound webhook whose signature is missing or does not match."""

"""
Shared test fixtures
"""
import os

# The engine is created at import time and refuses to start without a URL
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadsync.core.database import Base
import leadsync.models  # noqa: F401
from leadsync.services.settings_service import set_setting
from leadsync.services.tenant_service import get_or_create_tenant


@pytest.fixture
def db_session():
    """Create test database session"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def test_tenant(db_session):
    """Create test tenant"""
    return get_or_create_tenant(db_session, "Demo Company", "demo")


@pytest.fixture
def facebook_configured(db_session, test_tenant):
    set_setting(db_session, test_tenant.id, "FACEBOOK_CONFIG", {
        "accessToken": "fb-token",
        "pixelId": "123456",
        "appId": "app-1",
        "appSecret": "app-secret",
    })
    return test_tenant


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by handler(request)"""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingHandler:
    """MockTransport handler that replays fixed responses and keeps every request"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy so one template can answer many requests
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

"""Shared test fixtures for the Payie gateway tests.

Uses a SQLite file database so tests run without PostgreSQL, and an
``httpx.MockTransport`` in place of every upstream provider.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from gateway. The Settings
# model reads .env eagerly via pydantic-settings, and the module-level
# ``engine`` in gateway.core.database would try to connect to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

from typing import Any, Callable, Optional, Union

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from gateway.core.config import Settings, parse_provider_configs
from gateway.core.context import GatewayContext
from gateway.core.database import Base, get_db
from gateway.main import app
from gateway.schemas.request import GatewayRequest, extract_details, generate_gateway_ref
from gateway.services.ledger import Ledger

# Use SQLite file-based database for tests (no PostgreSQL needed)
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MOMO_URL = "https://momo.test"
CARD_URL = "https://card.test/v3/payments"
SMS_AUTH_URL = "https://auth.sms.test/oauth/token"
SMS_SEND_URL = "https://api.sms.test/sms/send"

PROVIDERS: dict[str, dict[str, Any]] = {
    "mtn-momo": {
        "name": "MTN Mobile Money",
        "type": ["collection", "payout"],
        "server_url": MOMO_URL,
        "provider_env": "sandbox",
        "api_user": "momo-user",
        "api_key": "momo-key",
        "collection_subscription_key": "collection-sub",
        "payout_subscription_key": "payout-sub",
    },
    "card": {
        "name": "Card Checkout",
        "type": ["purchase"],
        "server_url": CARD_URL,
        "secret_key": "sk_test_card",
    },
    "sms": {
        "name": "Bulk SMS",
        "type": ["sms"],
        "auth_scheme": "client_secret",
        "auth_url": SMS_AUTH_URL,
        "send_sms_url": SMS_SEND_URL,
        "client_id": "sms-client",
        "secret": "sms-secret",
    },
}

Handler = Union[Callable[[httpx.Request], httpx.Response], Exception]


class FakeUpstream:
    """Scripted provider endpoints keyed by ``(method, url without query)``.

    A route answers with a fixed status and JSON body, calls a handler,
    or raises an exception. Unscripted calls get a 404. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json: Any = None,
        handler: Optional[Handler] = None,
    ) -> None:
        if handler is None:
            handler = lambda request: httpx.Response(status_code, json=json)
        self.routes[(method.upper(), url)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"message": "no such route"})
        if isinstance(handler, Exception):
            raise handler
        return handler(request)

    def calls_to(self, fragment: str) -> list[httpx.Request]:
        return [c for c in self.calls if fragment in str(c.url)]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


def momo_token(access_token: str = "momo-token") -> dict[str, Any]:
    return {"access_token": access_token, "token_type": "access_token", "expires_in": 3600}


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def upstream():
    """Fake providers with the mobile-money token endpoints already scripted."""
    fake = FakeUpstream()
    fake.add("POST", f"{MOMO_URL}/collection/token/", json=momo_token("collection-token"))
    fake.add("POST", f"{MOMO_URL}/disbursement/token/", json=momo_token("disbursement-token"))
    return fake


@pytest.fixture
def settings():
    return Settings(database_url=TEST_DATABASE_URL, app_api_key=None)


@pytest.fixture
def gateway_context(settings, upstream):
    return GatewayContext.build(
        settings,
        providers=parse_provider_configs(PROVIDERS),
        http=upstream.client(),
    )


@pytest.fixture
def ledger(db_session):
    return Ledger(db_session)


@pytest.fixture
def make_request():
    """Factory for ``GatewayRequest`` objects as the router would build them."""

    def _make(provider: Optional[str] = "mtn-momo", **body: Any) -> GatewayRequest:
        return GatewayRequest(
            gateway_ref=generate_gateway_ref(),
            details=extract_details(body),
            provider_code=provider,
            body=body,
            url="/api/v1/test",
            ip_address="127.0.0.1",
        )

    return _make


@pytest.fixture(scope="function")
def client(db_session, gateway_context):
    """FastAPI test client with overridden DB dependency and gateway context."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.context = gateway_context
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.context = None

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesflow import audit, events
from salesflow.api.deps import ActorUser, get_current_user
from salesflow.compliance.service import generate_unsubscribe_token
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.main import app
from salesflow.messaging.providers import default_provider_registry
from salesflow.middleware.rate_limit import reset_rate_limiter


ALL_PERMISSIONS = {
    "leads.read",
    "leads.write",
    "messaging.read",
    "messaging.manage",
    "messaging.send",
    "compliance.read",
    "compliance.manage",
}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("UNSUBSCRIBE_TOKEN_SECRET", "api-test-secret")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, workspace_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="rep-1",
            workspace_id=workspace_id,
            permissions=ALL_PERMISSIONS,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(client: TestClient, email: str = "Grace@Example.com") -> dict:
    response = client.post("/api/leads", json={"first_name": "Grace", "email": email})
    assert response.status_code == 201
    return response.json()


def _create_account(client: TestClient, daily_limit: int = 5) -> dict:
    response = client.post(
        "/api/messaging/accounts",
        json={"email": "Rep@Acme.test", "provider": "STUB", "daily_limit": daily_limit},
    )
    assert response.status_code == 201
    return response.json()


def test_account_is_normalized_and_listed(client: TestClient) -> None:
    account = _create_account(client)
    assert account["email"] == "rep@acme.test"
    assert account["provider"] == "stub"
    assert account["sent_today"] == 0

    listed = client.get("/api/messaging/accounts")
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [account["id"]]


def test_send_email_records_outbound_message(client: TestClient) -> None:
    lead = _create_lead(client)
    account = _create_account(client)

    response = client.post(
        "/api/messaging/send",
        json={"lead_id": lead["id"], "subject": "Intro", "body": "Hello Grace"},
    )
    assert response.status_code == 201
    message = response.json()
    assert message["direction"] == "outbound"
    assert message["email_account_id"] == account["id"]
    assert message["status"] == "sent"

    sent = default_provider_registry().get("stub").outbox[-1]
    assert sent.subject == "Intro"
    assert sent.message_id == message["provider_message_id"]

    refreshed = client.get("/api/messaging/accounts").json()[0]
    assert refreshed["sent_today"] == 1
    assert client.get(f"/api/leads/{lead['id']}").json()["last_contacted_at"] is not None


def test_send_without_account_is_not_found(client: TestClient) -> None:
    lead = _create_lead(client)

    response = client.post("/api/messaging/send", json={"lead_id": lead["id"], "subject": "Hi", "body": "x"})
    assert response.status_code == 404
    assert response.json()["code"] == "email_account_not_found"


def test_daily_limit_blocks_send(client: TestClient) -> None:
    lead = _create_lead(client)
    _create_account(client, daily_limit=0)

    response = client.post("/api/messaging/send", json={"lead_id": lead["id"], "subject": "Hi", "body": "x"})
    assert response.status_code == 429
    assert response.json()["code"] == "daily_limit_exceeded"


def test_suppressed_address_is_blocked(client: TestClient) -> None:
    lead = _create_lead(client)
    _create_account(client)

    suppression = client.post("/api/compliance/suppressions", json={"email": "GRACE@example.com", "reason": "legal_hold"})
    assert suppression.status_code == 201
    assert suppression.json()["email"] == "grace@example.com"

    decision = client.get("/api/compliance/check", params={"email": "grace@EXAMPLE.com"})
    assert decision.status_code == 200
    assert decision.json() == {"can_send": False, "reason": "Suppressed: legal_hold"}

    response = client.post("/api/messaging/send", json={"lead_id": lead["id"], "subject": "Hi", "body": "x"})
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "send_suppressed"
    assert body["message"] == "Suppressed: legal_hold"


def test_unsubscribe_and_bounce_update_leads(client: TestClient) -> None:
    lead = _create_lead(client, "lin@example.com")

    unsubscribed = client.post("/api/compliance/unsubscribe", json={"email": "LIN@example.com"})
    assert unsubscribed.status_code == 200
    assert unsubscribed.json() == {"email": "lin@example.com", "leads_updated": 1, "enrollments_stopped": 0}

    bounced = client.post("/api/compliance/bounce", json={"email": "lin@example.com"})
    assert bounced.status_code == 200
    assert bounced.json()["leads_updated"] == 1

    stored = client.get(f"/api/leads/{lead['id']}").json()
    assert stored["is_unsubscribed"] is True
    assert stored["is_bounced"] is True
    assert client.get("/api/compliance/check", params={"email": "lin@example.com"}).json()["can_send"] is False


def test_public_unsubscribe_requires_valid_token(client: TestClient, workspace_id: uuid.UUID) -> None:
    _create_lead(client, "max@example.com")
    token = generate_unsubscribe_token(workspace_id, "max@example.com")

    rejected = client.post(
        "/api/compliance/public/unsubscribe",
        json={"workspace_id": str(workspace_id), "email": "max@example.com", "token": "0" * 64},
    )
    assert rejected.status_code == 403
    assert rejected.json()["code"] == "invalid_unsubscribe_token"

    accepted = client.post(
        "/api/compliance/public/unsubscribe",
        json={"workspace_id": str(workspace_id), "email": "max@example.com", "token": token},
    )
    assert accepted.status_code == 200
    assert accepted.json()["leads_updated"] == 1

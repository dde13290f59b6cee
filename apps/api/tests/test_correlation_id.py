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
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.main import app
from salesflow.middleware.rate_limit import reset_rate_limiter


ALL_PERMISSIONS = {
    "leads.read",
    "leads.write",
    "sequences.manage",
    "sequences.enroll",
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
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, workspace_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            workspace_id=workspace_id,
            permissions=ALL_PERMISSIONS,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(client: TestClient, correlation_id: str) -> dict:
    response = client.post(
        "/api/leads",
        json={"first_name": "Corr", "email": "corr@example.com"},
        headers={"X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value
    assert body["code"] == "lead_not_found"


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    lead = _create_lead(client, "corr-lead-1")
    sequence = client.post("/api/sequences", json={"name": "Corr sequence"}, headers={"X-Correlation-Id": "corr-audit-1"})
    assert sequence.status_code == 201

    enrolled = client.post(
        f"/api/sequences/{sequence.json()['id']}/enrollments",
        json={"lead_id": lead["id"]},
        headers={"X-Correlation-Id": "corr-audit-2"},
    )
    assert enrolled.status_code == 201

    enrollment_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "sequence_enrollment"]
    assert enrollment_audits
    assert enrollment_audits[-1]["correlation_id"] == "corr-audit-2"


def test_event_envelope_includes_correlation_id(client: TestClient, workspace_id: uuid.UUID) -> None:
    _create_lead(client, "corr-event-1")

    created_events = [item for item in events.published_events if item.get("event_type") == "lead.created"]
    assert created_events
    assert created_events[-1].get("correlation_id") == "corr-event-1"
    assert created_events[-1]["workspace_id"] == str(workspace_id)
    assert created_events[-1]["payload"]["lead_name"] == "Corr"


def test_rate_limited_response_includes_correlation_id(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()
    reset_rate_limiter()

    first = client.post("/api/leads", json={"first_name": "One"}, headers={"X-Correlation-Id": "corr-rate-1"})
    assert first.status_code == 201

    second = client.post("/api/leads", json={"first_name": "Two"}, headers={"X-Correlation-Id": "corr-rate-1"})
    assert second.status_code == 429
    payload = second.json()
    assert payload["correlation_id"] == "corr-rate-1"
    assert second.headers.get("x-correlation-id") == "corr-rate-1"

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesflow import audit, events
from salesflow.api.deps import ActorUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.main import app
from salesflow.middleware.rate_limit import reset_rate_limiter
from salesflow.sequences.models import SequenceEnrollment


ALL_PERMISSIONS = {
    "leads.read",
    "leads.write",
    "tasks.read",
    "tasks.write",
    "sequences.read",
    "sequences.manage",
    "sequences.enroll",
    "sequences.process",
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
def permissions() -> set[str]:
    return set(ALL_PERMISSIONS)


@pytest.fixture()
def client(db_session: Session, workspace_id: uuid.UUID, permissions: set[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="rep-1",
            workspace_id=workspace_id,
            permissions=permissions,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(client: TestClient, email: str = "ada@example.com") -> dict:
    response = client.post("/api/leads", json={"first_name": "Ada", "last_name": "Lovelace", "email": email})
    assert response.status_code == 201
    return response.json()


def _create_sequence(client: TestClient, automation_mode: str = "manual") -> dict:
    response = client.post(
        "/api/sequences",
        json={
            "name": "Onboarding",
            "automation_mode": automation_mode,
            "steps": [
                {"step_type": "email", "subject": "Hi {{first_name}}", "body": "Welcome aboard"},
                {"step_type": "delay", "delay_value": 2, "delay_unit": "days"},
            ],
        },
    )
    assert response.status_code == 201
    return response.json()


def test_create_sequence_numbers_steps_and_starts_inactive(client: TestClient) -> None:
    sequence = _create_sequence(client)

    assert sequence["is_active"] is False
    assert [step["step_number"] for step in sequence["steps"]] == [0, 1]
    assert [step["step_type"] for step in sequence["steps"]] == ["email", "delay"]

    listed = client.get("/api/sequences")
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [sequence["id"]]


def test_invalid_step_type_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/sequences",
        json={"name": "Broken", "steps": [{"step_type": "sms", "body": "hi"}]},
    )
    assert response.status_code == 422


def test_duplicate_active_enrollment_conflicts_until_stopped(client: TestClient) -> None:
    lead = _create_lead(client)
    sequence = _create_sequence(client)

    first = client.post(f"/api/sequences/{sequence['id']}/enrollments", json={"lead_id": lead["id"]})
    assert first.status_code == 201
    assert first.json()["status"] == "active"
    assert first.json()["current_step"] == 0

    duplicate = client.post(f"/api/sequences/{sequence['id']}/enrollments", json={"lead_id": lead["id"]})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "already_enrolled"

    stopped = client.post(f"/api/sequences/enrollments/{first.json()['id']}/stop", json={"reason": "manual"})
    assert stopped.status_code == 200
    assert stopped.json()["status"] == "stopped"
    assert stopped.json()["stop_reason"] == "manual"

    stopped_again = client.post(f"/api/sequences/enrollments/{first.json()['id']}/stop", json={})
    assert stopped_again.status_code == 409
    assert stopped_again.json()["code"] == "invalid_state_transition"

    again = client.post(f"/api/sequences/{sequence['id']}/enrollments", json={"lead_id": lead["id"]})
    assert again.status_code == 201


def test_enrolling_unknown_lead_returns_not_found(client: TestClient) -> None:
    sequence = _create_sequence(client)

    response = client.post(f"/api/sequences/{sequence['id']}/enrollments", json={"lead_id": str(uuid.uuid4())})
    assert response.status_code == 404
    assert response.json()["code"] == "lead_not_found"


def test_manual_sequence_creates_task_and_completion_advances(client: TestClient, db_session: Session) -> None:
    lead = _create_lead(client)
    sequence = _create_sequence(client, automation_mode="manual")
    activated = client.patch(f"/api/sequences/{sequence['id']}", json={"is_active": True})
    assert activated.status_code == 200
    assert activated.json()["is_active"] is True

    enrollment = client.post(f"/api/sequences/{sequence['id']}/enrollments", json={"lead_id": lead["id"]})
    assert enrollment.status_code == 201

    first_tick = client.post("/api/sequences/process")
    assert first_tick.status_code == 200
    assert first_tick.json()["processed"] == 1
    assert first_tick.json()["failed"] == 0

    second_tick = client.post("/api/sequences/process")
    assert second_tick.status_code == 200

    tasks = client.get("/api/tasks", params={"lead_id": lead["id"]})
    assert tasks.status_code == 200
    assert len(tasks.json()) == 1
    task = tasks.json()[0]
    assert task["title"] == "Send sequence email: Hi Ada"
    assert task["task_type"] == "send_email"
    assert task["metadata"]["enrollment_id"] == enrollment.json()["id"]

    completed = client.post(f"/api/tasks/{task['id']}/complete")
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    stored = db_session.scalar(select(SequenceEnrollment).where(SequenceEnrollment.id == uuid.UUID(enrollment.json()["id"])))
    db_session.refresh(stored)
    assert stored.current_step == 1
    assert stored.emails_sent == 1
    assert stored.awaiting_step is None

    completed_again = client.post(f"/api/tasks/{task['id']}/complete")
    assert completed_again.status_code == 409


def test_missing_permission_is_forbidden(client: TestClient, permissions: set[str]) -> None:
    permissions.discard("sequences.manage")

    response = client.post("/api/sequences", json={"name": "Nope"})
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "forbidden"
    assert body["correlation_id"]


def test_sequence_audit_carries_request_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/api/sequences",
        json={"name": "Audited"},
        headers={"X-Correlation-Id": "seq-corr-1"},
    )
    assert response.status_code == 201

    sequence_audits = [entry for entry in audit.audit_entries if entry["entity_type"] == "sequence"]
    assert sequence_audits
    assert sequence_audits[-1]["correlation_id"] == "seq-corr-1"

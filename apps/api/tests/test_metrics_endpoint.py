from __future__ import annotations

import uuid
from collections.abc import Generator, Iterator
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesflow import jobs
from salesflow.api.deps import ActorUser, get_current_user
from salesflow.core.auth import AuthUser, get_current_user as auth_get_current_user
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.main import app
from salesflow.middleware.rate_limit import reset_rate_limiter


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, workspace_id: uuid.UUID, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_actor() -> ActorUser:
        return ActorUser(
            user_id="metrics-user",
            workspace_id=workspace_id,
            permissions={"leads.read", "leads.write", "workflows.manage", "workflows.execute"},
            correlation_id="metrics-corr-1",
        )

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["system.metrics.read"])

    @contextmanager
    def session_scope() -> Iterator[Session]:
        yield db_session

    monkeypatch.setattr(jobs, "_session_scope", session_scope)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_actor
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_job_and_workflow_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    lead = client.post("/api/leads", json={"first_name": "Metric"})
    assert lead.status_code == 201
    assert client.get(f"/api/leads/{lead.json()['id']}").status_code == 200

    workflow = client.post(
        "/api/workflows",
        json={"name": "Metrics", "trigger_type": "manual", "definition": {"actions": [{"type": "create_task", "title": "T"}]}},
    )
    assert workflow.status_code == 201
    assert client.patch(f"/api/workflows/{workflow.json()['id']}", json={"is_active": True}).status_code == 200
    executed = client.post(f"/api/workflows/{workflow.json()['id']}/execute", json={"trigger_data": {}})
    assert executed.status_code == 200

    jobs.run_job("sequence_tick", jobs.run_sequence_tick)

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "salesflow_jobs_total" in body
    assert "salesflow_job_duration_seconds" in body
    assert "workflow_runs_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/leads/{id}"' in body
    assert 'job_type="sequence_tick"' in body
    assert 'status="completed"' in body


def test_metrics_endpoint_requires_role(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="someone", roles=["user"])

    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404

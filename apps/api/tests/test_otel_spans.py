from __future__ import annotations

import os
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from salesflow.api.deps import ActorUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.main import app
from salesflow.middleware.rate_limit import reset_rate_limiter
from salesflow.otel import setup_inmemory_otel


ALL_PERMISSIONS = {
    "leads.read",
    "leads.write",
    "messaging.manage",
    "messaging.send",
    "workflows.manage",
    "workflows.execute",
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
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


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


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/api/leads",
        json={"first_name": "Span"},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_send_email_emits_gateway_and_provider_spans(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    lead = client.post("/api/leads", json={"first_name": "Span", "email": "span@example.com"})
    assert lead.status_code == 201
    account = client.post("/api/messaging/accounts", json={"email": "rep@acme.test", "provider": "stub"})
    assert account.status_code == 201

    sent = client.post(
        "/api/messaging/send",
        json={"lead_id": lead.json()["id"], "subject": "Traced", "body": "hello"},
        headers={"X-Correlation-Id": "otel-send-1"},
    )
    assert sent.status_code == 201

    spans = span_exporter.get_finished_spans()
    gateway_spans = [span for span in spans if span.name == "messaging.send_email"]
    assert gateway_spans
    assert gateway_spans[-1].attributes.get("lead_id") == lead.json()["id"]
    assert gateway_spans[-1].attributes.get("message_id") == sent.json()["provider_message_id"]

    provider_spans = [span for span in spans if span.name == "email_provider.send"]
    assert provider_spans
    assert provider_spans[-1].attributes.get("correlation_id") == "otel-send-1"


def test_workflow_execution_span_records_status(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    workflow = client.post(
        "/api/workflows",
        json={"name": "Traced", "trigger_type": "manual", "definition": {"actions": [{"type": "create_task", "title": "T"}]}},
    )
    assert workflow.status_code == 201
    assert client.patch(f"/api/workflows/{workflow.json()['id']}", json={"is_active": True}).status_code == 200

    run = client.post(f"/api/workflows/{workflow.json()['id']}/execute", json={"trigger_data": {}})
    assert run.status_code == 200

    workflow_spans = [span for span in span_exporter.get_finished_spans() if span.name == "workflows.execute"]
    assert workflow_spans
    assert workflow_spans[-1].attributes.get("run_id") == run.json()["id"]
    assert workflow_spans[-1].attributes.get("status") == "completed"

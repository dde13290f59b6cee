from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator, Iterator
from contextlib import contextmanager

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesflow import jobs
from salesflow.api.deps import ActorUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.core.database import Base, get_db
from salesflow.logging import JsonLogFormatter
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
def client(db_session: Session, workspace_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            workspace_id=workspace_id,
            permissions={"leads.read", "leads.write"},
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def job_session(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> Session:
    @contextmanager
    def session_scope() -> Iterator[Session]:
        yield db_session

    monkeypatch.setattr(jobs, "_session_scope", session_scope)
    return db_session


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    path = f"/api/leads/{uuid.uuid4()}"
    response = client.get(path, headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "salesflow.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_job_context_and_correlation_id(job_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    result = jobs.run_job("sequence_tick", jobs.run_sequence_tick, correlation_id="job-corr-1")
    assert result["processed"] == 0

    job_records = [record for record in caplog.records if record.name == "salesflow.jobs"]
    assert {record.getMessage() for record in job_records} >= {"job.started", "job.finished"}
    job_ids = {getattr(record, "job_id", None) for record in job_records}
    assert len(job_ids) == 1
    assert all(
        getattr(record, "job_type", None) == "sequence_tick"
        and getattr(record, "correlation_id", None) == "job-corr-1"
        for record in job_records
    )

    tick_records = [record for record in caplog.records if record.getMessage() == "sequence.tick"]
    assert tick_records
    assert getattr(tick_records[-1], "correlation_id", None) == "job-corr-1"


def test_failed_job_is_logged_and_reraised(job_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    def explode(session: Session) -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        jobs.run_job("email_sync", explode)

    failed = [record for record in caplog.records if record.name == "salesflow.jobs" and record.getMessage() == "job.failed"]
    assert failed
    assert getattr(failed[-1], "error", None) == "boom"
    finished = [record for record in caplog.records if record.name == "salesflow.jobs" and record.getMessage() == "job.finished"]
    assert getattr(finished[-1], "status", None) == "failed"


def test_json_formatter_emits_context_and_whitelisted_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "salesflow.sequences",
            "levelname": "INFO",
            "msg": "sequence.tick",
            "correlation_id": "fmt-1",
            "workspace_id": "ws-1",
            "enrollment_id": "E1",
            "error": "x" * 600,
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "sequence.tick"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["workspace_id"] == "ws-1"
    assert payload["fields"]["enrollment_id"] == "E1"
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]

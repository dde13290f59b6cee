from __future__ import annotations

import uuid
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesflow import jobs
from salesflow.core.celery_app import celery_app
from salesflow.core.config import get_settings
from salesflow.core.database import Base
from salesflow.crm.models import Lead, Task
from salesflow.messaging.models import EmailAccount
from salesflow.sequences.models import Sequence, SequenceEnrollment, SequenceStep
from salesflow.workflows.models import Workflow, WorkflowRun
from salesflow.workflows.service import EXECUTE_WORKFLOW_TASK, workflow_dispatcher


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
def setup_env(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("AUTO_RUN_WORKFLOW_JOBS", "false")
    get_settings.cache_clear()

    @contextmanager
    def session_scope() -> Iterator[Session]:
        yield db_session

    monkeypatch.setattr(jobs, "_session_scope", session_scope)
    yield
    get_settings.cache_clear()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


def _workflow(db_session: Session, workspace_id: uuid.UUID, trigger_type: str = "lead.created") -> Workflow:
    workflow = Workflow(
        workspace_id=workspace_id,
        name="Greeter",
        trigger_type=trigger_type,
        automation_mode="autopilot",
        definition={"conditions": [], "actions": [{"type": "create_task", "title": "Greet {{lead_name}}"}]},
        is_active=True,
    )
    db_session.add(workflow)
    db_session.commit()
    return workflow


def test_sequence_tick_job_sends_autopilot_email(db_session: Session, workspace_id: uuid.UUID) -> None:
    lead = Lead(workspace_id=workspace_id, first_name="Ada", email="ada@example.com")
    sequence = Sequence(workspace_id=workspace_id, name="Auto", automation_mode="autopilot", is_active=True)
    db_session.add_all([lead, sequence])
    db_session.add(EmailAccount(workspace_id=workspace_id, email="rep@acme.test", provider="stub", daily_limit=10))
    db_session.flush()
    db_session.add(SequenceStep(sequence_id=sequence.id, step_number=0, step_type="email", subject="Hi", body="Hello"))
    enrollment = SequenceEnrollment(sequence_id=sequence.id, lead_id=lead.id, status="active")
    db_session.add(enrollment)
    db_session.commit()

    result = jobs.process_sequences_task()

    assert result["processed"] == 1
    assert result["advanced"] == 1
    assert result["failed"] == 0
    db_session.refresh(enrollment)
    assert enrollment.emails_sent == 1
    assert enrollment.current_step == 1


def test_email_sync_job_records_provider_errors(db_session: Session, workspace_id: uuid.UUID) -> None:
    account = EmailAccount(workspace_id=workspace_id, email="rep@acme.test", provider="outlook", daily_limit=10)
    db_session.add(account)
    db_session.commit()

    result = jobs.sync_email_accounts_task()

    assert result["accounts"] == 1
    assert result["failed"] == 1
    db_session.refresh(account)
    assert account.sync_error == "Unsupported email provider: outlook"


def test_workflow_job_executes_run(db_session: Session, workspace_id: uuid.UUID) -> None:
    workflow = _workflow(db_session, workspace_id, trigger_type="manual")

    result = jobs.execute_workflow_task(str(workflow.id), {"lead_name": "Ada"})

    assert result["status"] == "completed"
    run = db_session.get(WorkflowRun, uuid.UUID(result["run_id"]))
    assert run is not None
    assert list(db_session.scalars(select(Task.title))) == ["Greet Ada"]


def test_dispatcher_enqueues_matching_workflows(
    db_session: Session,
    workspace_id: uuid.UUID,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    workflow = _workflow(db_session, workspace_id)
    _workflow(db_session, uuid.uuid4())
    sent: list[tuple[str, list[Any]]] = []
    monkeypatch.setattr(celery_app, "send_task", lambda name, args: sent.append((name, args)))

    dispatched = workflow_dispatcher.dispatch_for_event(
        db_session,
        {
            "event_id": "evt-1",
            "event_type": "lead.created",
            "workspace_id": str(workspace_id),
            "payload": {"lead_id": str(uuid.uuid4()), "lead_name": "Ada"},
        },
    )

    assert dispatched == [workflow.id]
    assert len(sent) == 1
    task_name, args = sent[0]
    assert task_name == EXECUTE_WORKFLOW_TASK
    assert args[0] == str(workflow.id)
    assert args[1]["event_type"] == "lead.created"
    assert args[1]["event_id"] == "evt-1"
    assert db_session.scalar(select(WorkflowRun.id)) is None


def test_beat_schedule_covers_periodic_jobs() -> None:
    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert scheduled == {"salesflow.tasks.process_sequences", "salesflow.tasks.sync_email_accounts"}

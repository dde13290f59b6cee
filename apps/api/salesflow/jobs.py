"""Background jobs run by Celery workers and beat.

Job bodies are plain functions over an explicit ``Session`` so they can be
exercised directly; the Celery tasks only own the session scope, correlation id,
logging and metrics.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from salesflow.context import bind_context, unbind_context
from salesflow.core.celery_app import celery_app
from salesflow.core.config import get_settings
from salesflow.core.database import session_factory
from salesflow.errors import error_message
from salesflow.messaging.service import MessagingGateway
from salesflow.metrics import observe_job
from salesflow.sequences.engine import SequenceEngine
from salesflow.workflows.engine import WorkflowEngine


logger = logging.getLogger("salesflow.jobs")
T = TypeVar("T")

sequence_engine = SequenceEngine()
messaging_gateway = MessagingGateway()
workflow_engine = WorkflowEngine()


def run_sequence_tick(session: Session) -> dict[str, Any]:
    settings = get_settings()
    result = sequence_engine.process_enrollments(session, batch_size=settings.sequence_batch_size)
    return result.model_dump()


def run_email_sync(session: Session) -> dict[str, Any]:
    return messaging_gateway.sync_all_accounts(session).model_dump()


def run_workflow(session: Session, workflow_id: str, trigger_data: dict[str, Any]) -> dict[str, Any]:
    run = workflow_engine.execute_workflow(session, uuid.UUID(workflow_id), trigger_data)
    return {"run_id": str(run.id), "status": run.status}


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = session_factory()()
    try:
        yield session
    finally:
        session.close()


def run_job(job_type: str, body: Callable[[Session], T], correlation_id: str | None = None) -> T:
    job_id = str(uuid.uuid4())
    tokens = bind_context(correlation_id or job_id)
    started = time.perf_counter()
    final_status = "failed"
    logger.info("job.started", extra={"job_id": job_id, "job_type": job_type})
    try:
        with _session_scope() as session:
            result = body(session)
        final_status = "succeeded"
        return result
    except Exception as exc:
        logger.exception("job.failed", extra={"job_id": job_id, "job_type": job_type, "error": error_message(exc)})
        raise
    finally:
        observe_job(job_type, final_status, time.perf_counter() - started)
        logger.info("job.finished", extra={"job_id": job_id, "job_type": job_type, "status": final_status})
        unbind_context(tokens)


@celery_app.task(name="salesflow.tasks.process_sequences")
def process_sequences_task() -> dict[str, Any]:
    return run_job("sequence_tick", run_sequence_tick)


@celery_app.task(name="salesflow.tasks.sync_email_accounts")
def sync_email_accounts_task() -> dict[str, Any]:
    return run_job("email_sync", run_email_sync)


@celery_app.task(name="salesflow.tasks.execute_workflow")
def execute_workflow_task(workflow_id: str, trigger_data: dict[str, Any]) -> dict[str, Any]:
    return run_job("workflow_execution", lambda session: run_workflow(session, workflow_id, trigger_data))

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salesflow import audit
from salesflow.api.deps import ActorUser
from salesflow.core.celery_app import celery_app
from salesflow.core.config import get_settings
from salesflow.errors import InvalidWorkflowDefinition, WorkflowNotFound, WorkflowRunNotFound, error_message
from salesflow.metrics import observe_workflow_guardrail_block
from salesflow.workflows.engine import WorkflowEngine
from salesflow.workflows.models import Workflow, WorkflowRun
from salesflow.workflows.schemas import (
    Pagination,
    WorkflowCreate,
    WorkflowDefinition,
    WorkflowRead,
    WorkflowRunPage,
    WorkflowRunRead,
    WorkflowUpdate,
)


logger = logging.getLogger("salesflow.workflows")

EXECUTE_WORKFLOW_TASK = "salesflow.tasks.execute_workflow"


def _check_guardrails(definition: WorkflowDefinition) -> None:
    settings = get_settings()
    if len(definition.actions) > settings.workflow_max_actions:
        observe_workflow_guardrail_block("MAX_ACTIONS")
        raise InvalidWorkflowDefinition(
            f"Workflow has {len(definition.actions)} actions, limit is {settings.workflow_max_actions}"
        )


@dataclass(slots=True)
class WorkflowService:
    engine: WorkflowEngine = field(default_factory=WorkflowEngine)

    def create_workflow(self, session: Session, actor: ActorUser, payload: WorkflowCreate) -> WorkflowRead:
        workspace_id = actor.require_workspace()
        _check_guardrails(payload.definition)
        workflow = Workflow(
            workspace_id=workspace_id,
            name=payload.name,
            description=payload.description,
            trigger_type=payload.trigger_type,
            trigger_config=payload.trigger_config,
            automation_mode=payload.automation_mode,
            definition=payload.definition.to_json(),
            is_active=False,
            created_by=actor.user_id,
        )
        session.add(workflow)
        session.commit()
        session.refresh(workflow)

        audit.record(
            actor.user_id,
            "workflow",
            str(workflow.id),
            "create",
            None,
            {"name": workflow.name, "trigger_type": workflow.trigger_type, "automation_mode": workflow.automation_mode},
            workspace_id=str(workspace_id),
            correlation_id=actor.correlation_id,
        )
        return self._to_read(workflow, 0)

    def update_workflow(self, session: Session, actor: ActorUser, workflow_id: uuid.UUID, payload: WorkflowUpdate) -> WorkflowRead:
        workflow = self._load_workflow(session, actor.require_workspace(), workflow_id)
        before = {"name": workflow.name, "is_active": workflow.is_active, "automation_mode": workflow.automation_mode}

        changes = payload.model_dump(exclude_unset=True, exclude={"definition"})
        for key, value in changes.items():
            if value is None and key != "description":
                continue
            setattr(workflow, key, value)
        if payload.definition is not None:
            _check_guardrails(payload.definition)
            workflow.definition = payload.definition.to_json()
        session.add(workflow)
        session.commit()
        session.refresh(workflow)

        audit.record(
            actor.user_id,
            "workflow",
            str(workflow.id),
            "update",
            before,
            {"name": workflow.name, "is_active": workflow.is_active, "automation_mode": workflow.automation_mode},
            workspace_id=str(workflow.workspace_id),
            correlation_id=actor.correlation_id,
        )
        return self._to_read(workflow, self._run_counts(session, [workflow.id]).get(workflow.id, 0))

    def list_workflows(self, session: Session, workspace_id: uuid.UUID) -> list[WorkflowRead]:
        workflows = list(
            session.scalars(
                select(Workflow)
                .where(Workflow.workspace_id == workspace_id)
                .order_by(Workflow.created_at.desc(), Workflow.id.desc())
            )
        )
        counts = self._run_counts(session, [workflow.id for workflow in workflows])
        return [self._to_read(workflow, counts.get(workflow.id, 0)) for workflow in workflows]

    def get_workflow(self, session: Session, workspace_id: uuid.UUID, workflow_id: uuid.UUID) -> WorkflowRead:
        workflow = self._load_workflow(session, workspace_id, workflow_id)
        return self._to_read(workflow, self._run_counts(session, [workflow.id]).get(workflow.id, 0))

    def execute(self, session: Session, actor: ActorUser, workflow_id: uuid.UUID, trigger_data: dict[str, Any]) -> WorkflowRun:
        workspace_id = actor.require_workspace()
        run = self.engine.execute_workflow(session, workflow_id, trigger_data, workspace_id=workspace_id)
        audit.record(
            actor.user_id,
            "workflow_run",
            str(run.id),
            "execute",
            None,
            {"workflow_id": str(workflow_id), "status": run.status},
            workspace_id=str(workspace_id),
            correlation_id=actor.correlation_id,
        )
        return run

    def list_runs(
        self,
        session: Session,
        workspace_id: uuid.UUID,
        workflow_id: uuid.UUID,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> WorkflowRunPage:
        self._load_workflow(session, workspace_id, workflow_id)
        page = max(page, 1)
        limit = max(limit, 1)
        total = int(
            session.scalar(select(func.count(WorkflowRun.id)).where(WorkflowRun.workflow_id == workflow_id)) or 0
        )
        runs = list(
            session.scalars(
                select(WorkflowRun)
                .where(WorkflowRun.workflow_id == workflow_id)
                .order_by(WorkflowRun.started_at.desc(), WorkflowRun.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        )
        return WorkflowRunPage(
            runs=[WorkflowRunRead.model_validate(run) for run in runs],
            pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        )

    def get_run(self, session: Session, workspace_id: uuid.UUID, run_id: uuid.UUID) -> WorkflowRun:
        run = session.scalar(select(WorkflowRun).where(WorkflowRun.id == run_id, WorkflowRun.workspace_id == workspace_id))
        if run is None:
            raise WorkflowRunNotFound("Workflow run not found")
        return run

    def _load_workflow(self, session: Session, workspace_id: uuid.UUID, workflow_id: uuid.UUID) -> Workflow:
        workflow = session.scalar(select(Workflow).where(Workflow.id == workflow_id, Workflow.workspace_id == workspace_id))
        if workflow is None:
            raise WorkflowNotFound("Workflow not found")
        return workflow

    def _run_counts(self, session: Session, workflow_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not workflow_ids:
            return {}
        rows = session.execute(
            select(WorkflowRun.workflow_id, func.count(WorkflowRun.id))
            .where(WorkflowRun.workflow_id.in_(workflow_ids))
            .group_by(WorkflowRun.workflow_id)
        ).all()
        return {row[0]: int(row[1]) for row in rows}

    def _to_read(self, workflow: Workflow, run_count: int) -> WorkflowRead:
        read = WorkflowRead.model_validate(workflow)
        read.run_count = run_count
        return read


WORKFLOW_TRIGGER_EVENTS = ("lead.created", "lead.stage_changed", "email.received")


@dataclass(slots=True)
class WorkflowDispatcher:
    """Routes domain events to the active workflows listening for them."""

    engine: WorkflowEngine = field(default_factory=WorkflowEngine)

    def matching_workflows(self, session: Session, envelope: dict[str, Any]) -> list[uuid.UUID]:
        event_type = envelope.get("event_type")
        workspace_raw = envelope.get("workspace_id")
        if not isinstance(event_type, str) or not workspace_raw:
            return []
        try:
            workspace_id = uuid.UUID(str(workspace_raw))
        except ValueError:
            return []
        return list(
            session.scalars(
                select(Workflow.id)
                .where(
                    Workflow.workspace_id == workspace_id,
                    Workflow.trigger_type == event_type,
                    Workflow.is_active.is_(True),
                )
                .order_by(Workflow.created_at.asc())
            )
        )

    def dispatch_for_event(self, session: Session, envelope: dict[str, Any]) -> list[uuid.UUID]:
        settings = get_settings()
        workflow_ids = self.matching_workflows(session, envelope)
        payload = envelope.get("payload")
        trigger_data: dict[str, Any] = dict(payload) if isinstance(payload, dict) else {}
        trigger_data.setdefault("event_type", envelope.get("event_type"))
        trigger_data.setdefault("event_id", envelope.get("event_id"))

        for workflow_id in workflow_ids:
            if not settings.auto_run_workflow_jobs:
                celery_app.send_task(EXECUTE_WORKFLOW_TASK, args=[str(workflow_id), trigger_data])
                continue
            try:
                self.engine.execute_workflow(session, workflow_id, trigger_data)
            except Exception as exc:
                logger.exception(
                    "workflow.dispatch_failed",
                    extra={"workflow_id": str(workflow_id), "event_name": envelope.get("event_type"), "error": error_message(exc)},
                )
        return workflow_ids


workflow_service = WorkflowService()
workflow_dispatcher = WorkflowDispatcher()

"""Workflow run state machine.

A run moves ``running -> completed | failed | waiting_approval``. Actions are
executed strictly in order from ``next_action_index``. Each successful action
is committed together with its log entry, so a later failure never undoes
earlier side effects. In ``assisted`` mode, actions listed in
``APPROVAL_REQUIRED_ACTIONS`` are not executed: the run pauses behind an
``ApprovalRequest`` and resumes from the same index once it is approved.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from salesflow.approvals.models import ApprovalRequest
from salesflow.core.clock import utcnow
from salesflow.crm.models import Lead, Proposal, Task
from salesflow.errors import (
    InvalidStateTransition,
    LeadNotFound,
    UnknownActionType,
    WorkflowActionError,
    WorkflowNotFound,
    WorkflowRunNotFound,
    error_message,
)
from salesflow.messaging.schemas import SendEmailRequest
from salesflow.messaging.service import MessagingGateway
from salesflow.metrics import observe_approval, observe_workflow_run
from salesflow.otel import domain_span
from salesflow.sequences.service import SequenceService
from salesflow.workflows.expressions import evaluate_conditions, render_template
from salesflow.workflows.models import Workflow, WorkflowRun
from salesflow.workflows.schemas import (
    ActionBase,
    ChangeStageAction,
    CreateTaskAction,
    EnrollSequenceAction,
    GenerateProposalAction,
    SendEmailAction,
    WorkflowDefinition,
    dump_action,
)


logger = logging.getLogger("salesflow.workflows")
TRACER_NAME = "salesflow.workflows"

APPROVAL_REQUIRED_ACTIONS: frozenset[str] = frozenset(
    {"send_email", "change_stage", "generate_proposal", "generate_invoice"}
)


def _log_entry(step: str, **fields: Any) -> dict[str, Any]:
    return {"step": step, **fields, "timestamp": utcnow().isoformat()}


def _append_log(run: WorkflowRun, entry: dict[str, Any]) -> None:
    run.execution_log = [*(run.execution_log or []), entry]


@dataclass(slots=True)
class WorkflowEngine:
    gateway: MessagingGateway = field(default_factory=MessagingGateway)
    sequences: SequenceService = field(default_factory=SequenceService)

    def execute_workflow(
        self,
        session: Session,
        workflow_id: uuid.UUID,
        trigger_data: dict[str, Any] | None = None,
        *,
        workspace_id: uuid.UUID | None = None,
    ) -> WorkflowRun:
        query = select(Workflow).where(Workflow.id == workflow_id, Workflow.is_active.is_(True))
        if workspace_id is not None:
            query = query.where(Workflow.workspace_id == workspace_id)
        workflow = session.scalar(query)
        if workflow is None:
            raise WorkflowNotFound("Workflow not found or inactive")

        definition = WorkflowDefinition.model_validate(workflow.definition or {})
        data = dict(trigger_data or {})
        run = WorkflowRun(
            workspace_id=workflow.workspace_id,
            workflow_id=workflow.id,
            status="running",
            automation_mode=workflow.automation_mode,
            trigger_data=data,
            definition_snapshot=definition.to_json(),
            execution_log=[_log_entry("trigger", type=workflow.trigger_type, data=data)],
            next_action_index=0,
            started_at=utcnow(),
        )
        session.add(run)
        session.commit()

        with domain_span(
            TRACER_NAME, "workflows.execute", workspace_id=workflow.workspace_id, workflow_id=workflow.id, run_id=run.id
        ) as span:

            passed = evaluate_conditions(definition.conditions, data)
            _append_log(run, _log_entry("conditions", passed=passed))
            if not passed:
                run.status = "completed"
                run.completed_at = utcnow()
                session.add(run)
                session.commit()
                observe_workflow_run("completed")
                logger.info(
                    "workflow.conditions_not_met",
                    extra={"workflow_id": str(workflow.id), "run_id": str(run.id)},
                )
                return run

            session.add(run)
            session.commit()
            run = self._run_actions(session, run, definition, start_index=0)
            span.set_attribute("status", run.status)
            return run

    def resume_run(self, session: Session, run_id: uuid.UUID, *, approved_action_index: int) -> WorkflowRun:
        run = session.get(WorkflowRun, run_id)
        if run is None:
            raise WorkflowRunNotFound("Workflow run not found")
        if run.status != "waiting_approval" or run.next_action_index != approved_action_index:
            raise InvalidStateTransition(f"Workflow run is {run.status}, cannot resume")

        definition = WorkflowDefinition.model_validate(run.definition_snapshot or {})
        run.status = "running"
        _append_log(run, _log_entry("approval_granted", index=approved_action_index))
        session.add(run)
        session.commit()

        with domain_span(TRACER_NAME, "workflows.resume", workspace_id=run.workspace_id, run_id=run.id) as span:
            run = self._run_actions(
                session,
                run,
                definition,
                start_index=approved_action_index,
                approved_index=approved_action_index,
            )
            span.set_attribute("status", run.status)
            return run

    def cancel_run(self, session: Session, run_id: uuid.UUID, reason: str) -> WorkflowRun:
        """Fail a run that is waiting on approval. Flushes only."""
        run = session.get(WorkflowRun, run_id)
        if run is None:
            raise WorkflowRunNotFound("Workflow run not found")
        if run.status != "waiting_approval":
            raise InvalidStateTransition(f"Workflow run is {run.status}, cannot cancel")

        run.status = "failed"
        run.error = reason
        run.completed_at = utcnow()
        _append_log(run, _log_entry("approval_rejected", index=run.next_action_index, error=reason))
        session.add(run)
        session.flush()
        observe_workflow_run("failed")
        return run

    def execute_action(self, session: Session, run: WorkflowRun, action: ActionBase) -> dict[str, Any]:
        data = run.trigger_data or {}

        if isinstance(action, SendEmailAction):
            message = self.gateway.send_email(
                session,
                SendEmailRequest(
                    workspace_id=run.workspace_id,
                    lead_id=self._lead_id(data),
                    subject=render_template(action.subject, data),
                    body=render_template(action.body, data),
                    email_account_id=action.email_account_id,
                ),
            )
            return {"email_message_id": str(message.id), "provider_message_id": message.provider_message_id}

        if isinstance(action, EnrollSequenceAction):
            enrollment = self.sequences.enroll(
                session,
                run.workspace_id,
                action.sequence_id,
                self._lead_id(data),
                actor_user_id="system",
            )
            return {"enrollment_id": str(enrollment.id)}

        if isinstance(action, CreateTaskAction):
            due_at = utcnow() + timedelta(days=action.due_in_days) if action.due_in_days is not None else None
            task = Task(
                workspace_id=run.workspace_id,
                lead_id=self._lead_id(data, required=False),
                title=render_template(action.title, data) or "Workflow task",
                description=render_template(action.description, data) or None,
                task_type=action.task_type,
                priority=action.priority,
                due_at=due_at,
                task_metadata={"workflow_id": str(run.workflow_id), "run_id": str(run.id)},
            )
            session.add(task)
            session.flush()
            return {"task_id": str(task.id)}

        if isinstance(action, ChangeStageAction):
            lead = self._load_lead(session, run.workspace_id, self._lead_id(data))
            previous_stage_id = lead.stage_id
            lead.stage_id = action.stage_id
            session.add(lead)
            session.flush()
            return {"lead_id": str(lead.id), "previous_stage_id": previous_stage_id, "stage_id": action.stage_id}

        if isinstance(action, GenerateProposalAction):
            lead = self._load_lead(session, run.workspace_id, self._lead_id(data))
            if action.title:
                title = render_template(action.title, data)
            else:
                title = f"Proposal for {data.get('lead_name') or lead.display_name}"
            proposal = Proposal(
                workspace_id=run.workspace_id,
                lead_id=lead.id,
                title=title,
                content={"source": "workflow", "workflow_id": str(run.workflow_id)},
                line_items=[],
                status="draft",
            )
            session.add(proposal)
            session.flush()
            return {"proposal_id": str(proposal.id)}

        raise UnknownActionType(action.type)

    def _run_actions(
        self,
        session: Session,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        *,
        start_index: int,
        approved_index: int | None = None,
    ) -> WorkflowRun:
        actions = definition.actions
        index = start_index
        while index < len(actions):
            action = actions[index]
            if (
                run.automation_mode == "assisted"
                and action.type in APPROVAL_REQUIRED_ACTIONS
                and index != approved_index
            ):
                self._pause_for_approval(session, run, action, index)
                return run

            try:
                result = self.execute_action(session, run, action)
            except Exception as exc:
                session.rollback()
                message = error_message(exc)
                _append_log(run, _log_entry("action", index=index, type=action.type, error=message))
                if action.continue_on_error:
                    run.next_action_index = index + 1
                    session.add(run)
                    session.commit()
                    logger.warning(
                        "workflow.action_failed_continuing",
                        extra={"workflow_id": str(run.workflow_id), "run_id": str(run.id), "error": message},
                    )
                    index += 1
                    continue

                run.status = "failed"
                run.error = message
                run.completed_at = utcnow()
                session.add(run)
                session.commit()
                observe_workflow_run("failed")
                logger.error(
                    "workflow.failed",
                    extra={"workflow_id": str(run.workflow_id), "run_id": str(run.id), "error": message},
                )
                raise

            _append_log(run, _log_entry("action", index=index, type=action.type, result=result))
            run.next_action_index = index + 1
            session.add(run)
            session.commit()
            index += 1

        now = utcnow()
        run.status = "completed"
        run.completed_at = now
        run.next_action_index = len(actions)
        session.add(run)
        workflow = session.get(Workflow, run.workflow_id)
        if workflow is not None:
            workflow.last_run_at = now
            session.add(workflow)
        session.commit()
        observe_workflow_run("completed")
        logger.info("workflow.completed", extra={"workflow_id": str(run.workflow_id), "run_id": str(run.id)})
        return run

    def _pause_for_approval(self, session: Session, run: WorkflowRun, action: ActionBase, index: int) -> None:
        approval = ApprovalRequest(
            workspace_id=run.workspace_id,
            request_type=action.type,
            entity_type="workflow_action",
            entity_id=run.id,
            requested_by="system",
            status="pending",
            data={
                "run_id": str(run.id),
                "workflow_id": str(run.workflow_id),
                "action_index": index,
                "action": dump_action(action),
                "trigger_data": run.trigger_data,
            },
        )
        session.add(approval)
        session.flush()

        _append_log(run, _log_entry("approval", index=index, type=action.type, approval_request_id=str(approval.id)))
        run.status = "waiting_approval"
        run.next_action_index = index
        session.add(run)
        session.commit()
        observe_approval("workflow_action", "created")
        observe_workflow_run("waiting_approval")
        logger.info(
            "workflow.waiting_approval",
            extra={"workflow_id": str(run.workflow_id), "run_id": str(run.id), "approval_id": str(approval.id)},
        )

    def _lead_id(self, data: dict[str, Any], *, required: bool = True) -> uuid.UUID | None:
        raw = data.get("lead_id") or data.get("leadId")
        if raw is None:
            if required:
                raise WorkflowActionError("Trigger data has no lead_id")
            return None
        try:
            return uuid.UUID(str(raw))
        except ValueError as exc:
            raise WorkflowActionError(f"Invalid lead_id: {raw}") from exc

    def _load_lead(self, session: Session, workspace_id: uuid.UUID, lead_id: uuid.UUID | None) -> Lead:
        lead = session.scalar(select(Lead).where(Lead.id == lead_id, Lead.workspace_id == workspace_id))
        if lead is None:
            raise LeadNotFound("Lead not found")
        return lead


workflow_engine = WorkflowEngine()

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from salesflow import events
from salesflow.api.deps import ActorUser
from salesflow.core.clock import utcnow
from salesflow.crm.models import Activity, Lead, Task
from salesflow.crm.schemas import LeadCreate
from salesflow.errors import InvalidStateTransition, LeadNotFound, TaskNotFound
from salesflow.sequences.engine import mark_email_step_sent
from salesflow.sequences.models import SequenceEnrollment


logger = logging.getLogger("salesflow.crm")


def _lead_payload(lead: Lead) -> dict[str, object]:
    return {
        "lead_id": str(lead.id),
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "lead_name": lead.display_name,
        "company": lead.company,
        "email": lead.email,
        "stage_id": lead.stage_id,
        "custom_fields": dict(lead.custom_fields or {}),
    }


@dataclass(slots=True)
class LeadService:
    def create_lead(self, session: Session, actor: ActorUser, payload: LeadCreate) -> Lead:
        workspace_id = actor.require_workspace()
        lead = Lead(workspace_id=workspace_id, **payload.model_dump())
        session.add(lead)
        session.commit()
        session.refresh(lead)

        events.publish(events.build_envelope("lead.created", workspace_id, _lead_payload(lead)))
        return lead

    def get_lead(self, session: Session, workspace_id: uuid.UUID, lead_id: uuid.UUID) -> Lead:
        lead = session.scalar(select(Lead).where(Lead.id == lead_id, Lead.workspace_id == workspace_id))
        if lead is None:
            raise LeadNotFound("Lead not found")
        return lead

    def change_stage(self, session: Session, actor: ActorUser, lead_id: uuid.UUID, stage_id: str) -> Lead:
        lead = self.get_lead(session, actor.require_workspace(), lead_id)
        previous_stage_id = lead.stage_id
        lead.stage_id = stage_id
        lead.last_activity_at = utcnow()
        session.add(lead)
        session.add(
            Activity(
                workspace_id=lead.workspace_id,
                lead_id=lead.id,
                user_id=actor.user_id,
                activity_type="stage_changed",
                title=f"Stage changed to {stage_id}",
                activity_metadata={"previous_stage_id": previous_stage_id, "stage_id": stage_id},
            )
        )
        session.commit()
        session.refresh(lead)

        if previous_stage_id != stage_id:
            payload = _lead_payload(lead)
            payload["previous_stage_id"] = previous_stage_id
            events.publish(events.build_envelope("lead.stage_changed", lead.workspace_id, payload))
        return lead


@dataclass(slots=True)
class TaskService:
    def list_tasks(
        self,
        session: Session,
        workspace_id: uuid.UUID,
        *,
        status: str | None = None,
        lead_id: uuid.UUID | None = None,
    ) -> list[Task]:
        query = select(Task).where(Task.workspace_id == workspace_id)
        if status is not None:
            query = query.where(Task.status == status)
        if lead_id is not None:
            query = query.where(Task.lead_id == lead_id)
        return list(session.scalars(query.order_by(Task.created_at.desc(), Task.id.desc())))

    def complete_task(self, session: Session, actor: ActorUser, task_id: uuid.UUID) -> Task:
        """Complete a task; a sequence ``send_email`` task also advances its enrollment."""
        workspace_id = actor.require_workspace()
        task = session.scalar(select(Task).where(Task.id == task_id, Task.workspace_id == workspace_id))
        if task is None:
            raise TaskNotFound("Task not found")
        if task.status == "completed":
            raise InvalidStateTransition("Task is already completed")

        now = utcnow()
        task.status = "completed"
        task.completed_at = now
        session.add(task)

        metadata = task.task_metadata or {}
        enrollment_raw = metadata.get("enrollment_id")
        if task.task_type == "send_email" and enrollment_raw:
            enrollment = session.get(SequenceEnrollment, uuid.UUID(str(enrollment_raw)))
            if enrollment is not None and mark_email_step_sent(enrollment, int(metadata.get("step_number", -1)), now):
                session.add(enrollment)
                if task.lead_id is not None:
                    lead = session.get(Lead, task.lead_id)
                    if lead is not None:
                        lead.last_contacted_at = now
                        lead.last_activity_at = now
                        if lead.first_contact_at is None:
                            lead.first_contact_at = now
                        session.add(lead)
                logger.info(
                    "sequence.manual_step_completed",
                    extra={"enrollment_id": str(enrollment.id), "lead_id": str(task.lead_id)},
                )

        session.commit()
        session.refresh(task)
        return task


lead_service = LeadService()
task_service = TaskService()

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salesflow import audit
from salesflow.api.deps import ActorUser
from salesflow.core.clock import utcnow
from salesflow.crm.models import Activity, Lead
from salesflow.errors import AlreadyEnrolled, EnrollmentNotFound, InvalidStateTransition, LeadNotFound, SequenceNotFound
from salesflow.sequences.models import Sequence, SequenceEnrollment, SequenceStep
from salesflow.sequences.schemas import (
    ConditionStepCreate,
    DelayStepCreate,
    EmailStepCreate,
    SequenceCreate,
    SequenceRead,
    SequenceStepRead,
    SequenceUpdate,
)


logger = logging.getLogger("salesflow.sequences")


def _build_step(sequence_id: uuid.UUID, step_number: int, payload: EmailStepCreate | DelayStepCreate | ConditionStepCreate) -> SequenceStep:
    step = SequenceStep(sequence_id=sequence_id, step_number=step_number, step_type=payload.step_type, conditions=[])
    if isinstance(payload, EmailStepCreate):
        step.subject = payload.subject
        step.body = payload.body
    elif isinstance(payload, DelayStepCreate):
        step.delay_value = payload.delay_value
        step.delay_unit = payload.delay_unit
    else:
        step.conditions = [condition.model_dump(mode="json") for condition in payload.conditions]
    return step


def stop_active_enrollments(session: Session, lead_ids: list[uuid.UUID], reason: str, now: datetime | None = None) -> int:
    """Stop every active enrollment of the given leads. Flushes only."""
    if not lead_ids:
        return 0
    stopped_at = now or utcnow()
    enrollments = list(
        session.scalars(
            select(SequenceEnrollment).where(
                SequenceEnrollment.lead_id.in_(lead_ids),
                SequenceEnrollment.status == "active",
            )
        )
    )
    for enrollment in enrollments:
        enrollment.status = "stopped"
        enrollment.stop_reason = reason
        enrollment.stopped_at = stopped_at
        enrollment.awaiting_step = None
        session.add(enrollment)
    session.flush()
    return len(enrollments)


@dataclass(slots=True)
class SequenceService:
    def create_sequence(self, session: Session, actor: ActorUser, payload: SequenceCreate) -> SequenceRead:
        workspace_id = actor.require_workspace()
        sequence = Sequence(
            workspace_id=workspace_id,
            name=payload.name,
            description=payload.description,
            automation_mode=payload.automation_mode,
            is_active=False,
            created_by=actor.user_id,
        )
        session.add(sequence)
        session.flush()

        for step_number, step_payload in enumerate(payload.steps):
            session.add(_build_step(sequence.id, step_number, step_payload))
        session.commit()

        audit.record(
            actor.user_id,
            "sequence",
            str(sequence.id),
            "create",
            None,
            {"name": sequence.name, "automation_mode": sequence.automation_mode, "steps": len(payload.steps)},
            workspace_id=str(workspace_id),
            correlation_id=actor.correlation_id,
        )
        return self.get_sequence(session, actor, sequence.id)

    def update_sequence(self, session: Session, actor: ActorUser, sequence_id: uuid.UUID, payload: SequenceUpdate) -> SequenceRead:
        sequence = self._load_sequence(session, actor.require_workspace(), sequence_id)
        before = {"name": sequence.name, "automation_mode": sequence.automation_mode, "is_active": sequence.is_active}
        changes = payload.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is None and key != "description":
                continue
            setattr(sequence, key, value)
        session.add(sequence)
        session.commit()

        audit.record(
            actor.user_id,
            "sequence",
            str(sequence.id),
            "update",
            before,
            {"name": sequence.name, "automation_mode": sequence.automation_mode, "is_active": sequence.is_active},
            workspace_id=str(sequence.workspace_id),
            correlation_id=actor.correlation_id,
        )
        return self.get_sequence(session, actor, sequence.id)

    def get_sequence(self, session: Session, actor: ActorUser, sequence_id: uuid.UUID) -> SequenceRead:
        sequence = self._load_sequence(session, actor.require_workspace(), sequence_id)
        counts = self._active_counts(session, [sequence.id])
        return self._to_read(sequence, counts.get(sequence.id, 0))

    def list_sequences(self, session: Session, workspace_id: uuid.UUID) -> list[SequenceRead]:
        sequences = list(
            session.scalars(
                select(Sequence)
                .options(selectinload(Sequence.steps))
                .where(Sequence.workspace_id == workspace_id)
                .order_by(Sequence.created_at.desc(), Sequence.id.desc())
            )
        )
        counts = self._active_counts(session, [sequence.id for sequence in sequences])
        return [self._to_read(sequence, counts.get(sequence.id, 0)) for sequence in sequences]

    def enroll(
        self,
        session: Session,
        workspace_id: uuid.UUID,
        sequence_id: uuid.UUID,
        lead_id: uuid.UUID,
        *,
        actor_user_id: str | None = None,
    ) -> SequenceEnrollment:
        """Create an active enrollment at step 0. Flushes only."""
        sequence = session.scalar(select(Sequence).where(Sequence.id == sequence_id, Sequence.workspace_id == workspace_id))
        if sequence is None:
            raise SequenceNotFound("Sequence not found")
        lead = session.scalar(select(Lead).where(Lead.id == lead_id, Lead.workspace_id == workspace_id))
        if lead is None:
            raise LeadNotFound("Lead not found")

        existing = session.scalar(
            select(SequenceEnrollment.id).where(
                SequenceEnrollment.sequence_id == sequence_id,
                SequenceEnrollment.lead_id == lead_id,
                SequenceEnrollment.status == "active",
            )
        )
        if existing is not None:
            raise AlreadyEnrolled("Lead is already enrolled in this sequence")

        now = utcnow()
        enrollment = SequenceEnrollment(
            sequence_id=sequence_id,
            lead_id=lead_id,
            status="active",
            current_step=0,
            emails_sent=0,
            step_entered_at=now,
        )
        session.add(enrollment)
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise AlreadyEnrolled("Lead is already enrolled in this sequence") from exc

        session.add(
            Activity(
                workspace_id=workspace_id,
                lead_id=lead_id,
                user_id=actor_user_id,
                activity_type="sequence_enrolled",
                title=f"Enrolled in sequence: {sequence.name}",
                activity_metadata={"sequence_id": str(sequence_id), "enrollment_id": str(enrollment.id)},
            )
        )
        session.flush()
        logger.info(
            "sequence.enrolled",
            extra={"sequence_id": str(sequence_id), "lead_id": str(lead_id), "enrollment_id": str(enrollment.id)},
        )
        return enrollment

    def enroll_lead(self, session: Session, actor: ActorUser, sequence_id: uuid.UUID, lead_id: uuid.UUID) -> SequenceEnrollment:
        workspace_id = actor.require_workspace()
        enrollment = self.enroll(session, workspace_id, sequence_id, lead_id, actor_user_id=actor.user_id)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise AlreadyEnrolled("Lead is already enrolled in this sequence") from exc
        session.refresh(enrollment)

        audit.record(
            actor.user_id,
            "sequence_enrollment",
            str(enrollment.id),
            "create",
            None,
            {"sequence_id": str(sequence_id), "lead_id": str(lead_id)},
            workspace_id=str(workspace_id),
            correlation_id=actor.correlation_id,
        )
        return enrollment

    def stop_enrollment(self, session: Session, actor: ActorUser, enrollment_id: uuid.UUID, reason: str = "manual") -> SequenceEnrollment:
        enrollment = self.get_enrollment(session, actor.require_workspace(), enrollment_id)
        if enrollment.status != "active":
            raise InvalidStateTransition(f"Enrollment is already {enrollment.status}")
        enrollment.status = "stopped"
        enrollment.stop_reason = reason
        enrollment.stopped_at = utcnow()
        enrollment.awaiting_step = None
        session.add(enrollment)
        session.commit()
        session.refresh(enrollment)

        audit.record(
            actor.user_id,
            "sequence_enrollment",
            str(enrollment.id),
            "stop",
            {"status": "active"},
            {"status": "stopped", "stop_reason": reason},
            workspace_id=str(actor.workspace_id),
            correlation_id=actor.correlation_id,
        )
        return enrollment

    def get_enrollment(self, session: Session, workspace_id: uuid.UUID, enrollment_id: uuid.UUID) -> SequenceEnrollment:
        enrollment = session.scalar(
            select(SequenceEnrollment)
            .join(Sequence, Sequence.id == SequenceEnrollment.sequence_id)
            .where(SequenceEnrollment.id == enrollment_id, Sequence.workspace_id == workspace_id)
        )
        if enrollment is None:
            raise EnrollmentNotFound("Enrollment not found")
        return enrollment

    def _load_sequence(self, session: Session, workspace_id: uuid.UUID, sequence_id: uuid.UUID) -> Sequence:
        sequence = session.scalar(
            select(Sequence)
            .options(selectinload(Sequence.steps))
            .where(Sequence.id == sequence_id, Sequence.workspace_id == workspace_id)
        )
        if sequence is None:
            raise SequenceNotFound("Sequence not found")
        return sequence

    def _active_counts(self, session: Session, sequence_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not sequence_ids:
            return {}
        rows = session.execute(
            select(SequenceEnrollment.sequence_id, func.count(SequenceEnrollment.id))
            .where(SequenceEnrollment.sequence_id.in_(sequence_ids), SequenceEnrollment.status == "active")
            .group_by(SequenceEnrollment.sequence_id)
        ).all()
        return {row[0]: int(row[1]) for row in rows}

    def _to_read(self, sequence: Sequence, active_count: int) -> SequenceRead:
        steps = sorted(sequence.steps, key=lambda step: step.step_number)
        return SequenceRead(
            id=sequence.id,
            workspace_id=sequence.workspace_id,
            name=sequence.name,
            description=sequence.description,
            automation_mode=sequence.automation_mode,  # type: ignore[arg-type]
            is_active=sequence.is_active,
            created_at=sequence.created_at,
            updated_at=sequence.updated_at,
            steps=[SequenceStepRead.model_validate(step) for step in steps],
            active_enrollment_count=active_count,
        )


sequence_service = SequenceService()

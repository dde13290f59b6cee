"""Periodic processor that moves sequence enrollments forward.

Each tick walks every active enrollment of an active sequence, oldest first, in
keyset pages of ``sequence_batch_size`` and processes them one at a time. Every enrollment is committed on its own; a
failure rolls back that enrollment only and the sweep continues.
"""

from __future__ import annotations

import itertools
import logging
import re
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, selectinload

from salesflow.approvals.models import ApprovalRequest
from salesflow.core.clock import as_utc, utcnow
from salesflow.core.config import get_settings
from salesflow.crm.models import Lead, Task
from salesflow.errors import InvalidSequenceDefinition, error_message
from salesflow.messaging.schemas import SendEmailRequest
from salesflow.messaging.service import MessagingGateway
from salesflow.metrics import observe_approval, observe_sequence_step
from salesflow.sequences.models import Sequence, SequenceEnrollment, SequenceStep
from salesflow.sequences.schemas import SweepResult
from salesflow.workflows.expressions import evaluate_conditions


logger = logging.getLogger("salesflow.sequences")

_LEAD_TOKEN_RE = re.compile(r"\{\{(\w+)\}\}")
DELAY_UNITS: dict[str, timedelta] = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


def lead_variables(lead: Lead) -> dict[str, str]:
    return {
        "first_name": lead.first_name or "",
        "last_name": lead.last_name or "",
        "full_name": lead.display_name,
        "company": lead.company or "",
        "email": lead.email or "",
    }


def render_lead_template(template: str | None, variables: dict[str, str]) -> str:
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return variables[key]
        return match.group(0)

    return _LEAD_TOKEN_RE.sub(_replace, template)


def lead_context(lead: Lead, enrollment: SequenceEnrollment) -> dict[str, Any]:
    return {
        **lead_variables(lead),
        "phone": lead.phone,
        "stage_id": lead.stage_id,
        "is_bounced": lead.is_bounced,
        "is_unsubscribed": lead.is_unsubscribed,
        "custom_fields": dict(lead.custom_fields or {}),
        "emails_sent": enrollment.emails_sent,
        "current_step": enrollment.current_step,
    }


def mark_email_step_sent(enrollment: SequenceEnrollment, step_number: int, now: datetime | None = None) -> bool:
    """Advance past an email step sent outside the tick (task or approval).

    Returns False when the enrollment has moved on or is no longer active.
    """
    if enrollment.status != "active" or enrollment.current_step != step_number:
        return False
    enrollment.emails_sent += 1
    enrollment.current_step += 1
    enrollment.step_entered_at = now or utcnow()
    enrollment.awaiting_step = None
    return True


@dataclass(slots=True)
class SequenceEngine:
    gateway: MessagingGateway = field(default_factory=MessagingGateway)

    def active_enrollment_batches(self, session: Session, batch_size: int | None = None) -> Iterator[list[uuid.UUID]]:
        """Yield ids of every active enrollment, oldest first, in keyset pages of ``batch_size``.

        Each page is read after the previous one has been processed, so
        enrollments still waiting on a task, approval or delay never hide newer ones.
        """
        query = (
            select(SequenceEnrollment.id, SequenceEnrollment.created_at)
            .join(Sequence, Sequence.id == SequenceEnrollment.sequence_id)
            .where(SequenceEnrollment.status == "active", Sequence.is_active.is_(True))
            .order_by(SequenceEnrollment.created_at.asc(), SequenceEnrollment.id.asc())
        )
        if batch_size is None:
            yield [row.id for row in session.execute(query)]
            return

        page = query.limit(batch_size)
        while True:
            rows = session.execute(page).all()
            if rows:
                yield [row.id for row in rows]
            if len(rows) < batch_size:
                return
            last_created_at, last_id = rows[-1].created_at, rows[-1].id
            page = query.where(
                or_(
                    SequenceEnrollment.created_at > last_created_at,
                    and_(SequenceEnrollment.created_at == last_created_at, SequenceEnrollment.id > last_id),
                )
            ).limit(batch_size)

    def process_enrollments(
        self, session: Session, *, now: datetime | None = None, batch_size: int | None = None
    ) -> SweepResult:
        current = now or utcnow()
        result = SweepResult()
        for enrollment_id in itertools.chain.from_iterable(self.active_enrollment_batches(session, batch_size)):
            result.processed += 1
            try:
                outcome = self.process_enrollment(session, enrollment_id, now=current)
                session.commit()
            except Exception as exc:
                session.rollback()
                result.failed += 1
                logger.exception(
                    "sequence.enrollment_failed",
                    extra={"enrollment_id": str(enrollment_id), "error": error_message(exc)},
                )
                continue

            if outcome == "advanced":
                result.advanced += 1
            elif outcome == "completed":
                result.completed += 1
            elif outcome == "waiting":
                result.waiting += 1

        logger.info(
            "sequence.tick",
            extra={"count": result.processed, "status": "partial" if result.failed else "ok"},
        )
        return result

    def process_enrollment(self, session: Session, enrollment_id: uuid.UUID, *, now: datetime | None = None) -> str:
        """Apply at most one step to the enrollment. Does not commit."""
        current = now or utcnow()
        enrollment = session.scalar(
            select(SequenceEnrollment)
            .options(
                selectinload(SequenceEnrollment.sequence).selectinload(Sequence.steps),
                selectinload(SequenceEnrollment.lead),
            )
            .where(SequenceEnrollment.id == enrollment_id)
        )
        if enrollment is None or enrollment.status != "active":
            return "skipped"

        steps = sorted(enrollment.sequence.steps, key=lambda step: step.step_number)
        if enrollment.current_step >= len(steps):
            self._complete(session, enrollment, current)
            observe_sequence_step("end", "completed")
            return "completed"

        step = steps[enrollment.current_step]
        if step.step_type == "email":
            outcome = self._handle_email(session, enrollment, step, current)
        elif step.step_type == "delay":
            outcome = self._handle_delay(session, enrollment, step, current)
        elif step.step_type == "condition":
            outcome = self._handle_condition(session, enrollment, step, current)
        else:
            raise InvalidSequenceDefinition(f"Unknown step type: {step.step_type}")

        observe_sequence_step(step.step_type, outcome)
        return outcome

    def _handle_email(self, session: Session, enrollment: SequenceEnrollment, step: SequenceStep, now: datetime) -> str:
        if enrollment.awaiting_step == enrollment.current_step:
            return "waiting"

        sequence = enrollment.sequence
        lead = enrollment.lead
        variables = lead_variables(lead)
        subject = render_lead_template(step.subject, variables)
        body = render_lead_template(step.body, variables)

        if sequence.automation_mode == "manual":
            session.add(
                Task(
                    workspace_id=sequence.workspace_id,
                    lead_id=lead.id,
                    title=f"Send sequence email: {subject}",
                    description=body,
                    task_type="send_email",
                    priority="medium",
                    task_metadata={
                        "enrollment_id": str(enrollment.id),
                        "step_id": str(step.id),
                        "step_number": step.step_number,
                        "subject": subject,
                        "body": body,
                    },
                )
            )
            enrollment.awaiting_step = enrollment.current_step
            session.add(enrollment)
            return "waiting"

        if sequence.automation_mode == "assisted":
            session.add(
                ApprovalRequest(
                    workspace_id=sequence.workspace_id,
                    request_type="email_send",
                    entity_type="sequence_email",
                    entity_id=enrollment.id,
                    requested_by="system",
                    status="pending",
                    data={
                        "lead_id": str(lead.id),
                        "subject": subject,
                        "body": body,
                        "enrollment_id": str(enrollment.id),
                        "step_number": step.step_number,
                    },
                )
            )
            enrollment.awaiting_step = enrollment.current_step
            session.add(enrollment)
            observe_approval("sequence_email", "created")
            return "waiting"

        if sequence.automation_mode == "autopilot":
            self.gateway.send_email(
                session,
                SendEmailRequest(workspace_id=sequence.workspace_id, lead_id=lead.id, subject=subject, body=body),
            )
            enrollment.emails_sent += 1
            self._advance(session, enrollment, now)
            return "advanced"

        raise InvalidSequenceDefinition(f"Unknown automation mode: {sequence.automation_mode}")

    def _handle_delay(self, session: Session, enrollment: SequenceEnrollment, step: SequenceStep, now: datetime) -> str:
        settings = get_settings()
        if settings.sequence_enforce_delays:
            unit = DELAY_UNITS.get(step.delay_unit or "days")
            if unit is None:
                raise InvalidSequenceDefinition(f"Unknown delay unit: {step.delay_unit}")
            due_at = as_utc(enrollment.step_entered_at) + unit * (step.delay_value or 0)  # type: ignore[operator]
            if now < due_at:
                return "waiting"
        self._advance(session, enrollment, now)
        return "advanced"

    def _handle_condition(self, session: Session, enrollment: SequenceEnrollment, step: SequenceStep, now: datetime) -> str:
        if evaluate_conditions(step.conditions or [], lead_context(enrollment.lead, enrollment)):
            self._advance(session, enrollment, now)
            return "advanced"
        self._complete(session, enrollment, now)
        return "completed"

    def _advance(self, session: Session, enrollment: SequenceEnrollment, now: datetime) -> None:
        enrollment.current_step += 1
        enrollment.step_entered_at = now
        enrollment.awaiting_step = None
        session.add(enrollment)

    def _complete(self, session: Session, enrollment: SequenceEnrollment, now: datetime) -> None:
        enrollment.status = "completed"
        enrollment.completed_at = now
        enrollment.awaiting_step = None
        session.add(enrollment)


sequence_engine = SequenceEngine()

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from salesflow import audit
from salesflow.api.deps import ActorUser
from salesflow.approvals.models import ApprovalRequest
from salesflow.core.clock import utcnow
from salesflow.errors import ApprovalNotFound, InvalidStateTransition
from salesflow.messaging.schemas import SendEmailRequest
from salesflow.messaging.service import MessagingGateway
from salesflow.metrics import observe_approval
from salesflow.sequences.engine import mark_email_step_sent
from salesflow.sequences.models import Sequence, SequenceEnrollment
from salesflow.workflows.engine import WorkflowEngine


logger = logging.getLogger("salesflow.approvals")


@dataclass(slots=True)
class ApprovalService:
    """Resolves pending approval requests.

    Approving a sequence email sends it and advances the enrollment in one
    commit. Approving a workflow action resumes the paused run from that
    action. Rejections stop the enrollment or fail the run.
    """

    gateway: MessagingGateway = field(default_factory=MessagingGateway)
    workflows: WorkflowEngine = field(default_factory=WorkflowEngine)

    def list_requests(self, session: Session, workspace_id: uuid.UUID, status: str | None = None) -> list[ApprovalRequest]:
        query = select(ApprovalRequest).where(ApprovalRequest.workspace_id == workspace_id)
        if status is not None:
            query = query.where(ApprovalRequest.status == status)
        return list(session.scalars(query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())))

    def get_request(self, session: Session, workspace_id: uuid.UUID, approval_id: uuid.UUID) -> ApprovalRequest:
        approval = session.scalar(
            select(ApprovalRequest).where(ApprovalRequest.id == approval_id, ApprovalRequest.workspace_id == workspace_id)
        )
        if approval is None:
            raise ApprovalNotFound("Approval request not found")
        return approval

    def approve(self, session: Session, actor: ActorUser, approval_id: uuid.UUID, note: str | None = None) -> ApprovalRequest:
        approval = self._load_pending(session, actor, approval_id)

        if approval.entity_type == "sequence_email":
            try:
                self._approve_sequence_email(session, approval)
            except Exception:
                session.rollback()
                raise
            self._resolve(approval, actor, "approved", note)
            session.add(approval)
            session.commit()
        elif approval.entity_type == "workflow_action":
            self._resolve(approval, actor, "approved", note)
            session.add(approval)
            session.commit()
            self.workflows.resume_run(
                session,
                approval.entity_id,
                approved_action_index=int(approval.data.get("action_index", 0)),
            )
        else:
            raise InvalidStateTransition(f"Unsupported approval entity type: {approval.entity_type}")

        self._after_resolution(actor, approval, "approved")
        return approval

    def reject(self, session: Session, actor: ActorUser, approval_id: uuid.UUID, note: str | None = None) -> ApprovalRequest:
        approval = self._load_pending(session, actor, approval_id)
        reason = f"Approval rejected: {note}" if note else "Approval rejected"

        if approval.entity_type == "sequence_email":
            enrollment = session.get(SequenceEnrollment, approval.entity_id)
            if enrollment is not None and enrollment.status == "active":
                enrollment.status = "stopped"
                enrollment.stop_reason = "approval_rejected"
                enrollment.stopped_at = utcnow()
                enrollment.awaiting_step = None
                session.add(enrollment)
        elif approval.entity_type == "workflow_action":
            self.workflows.cancel_run(session, approval.entity_id, reason)
        else:
            raise InvalidStateTransition(f"Unsupported approval entity type: {approval.entity_type}")

        self._resolve(approval, actor, "rejected", note)
        session.add(approval)
        session.commit()
        self._after_resolution(actor, approval, "rejected")
        return approval

    def _approve_sequence_email(self, session: Session, approval: ApprovalRequest) -> None:
        data = approval.data or {}
        enrollment = session.scalar(
            select(SequenceEnrollment)
            .join(Sequence, Sequence.id == SequenceEnrollment.sequence_id)
            .where(SequenceEnrollment.id == approval.entity_id, Sequence.workspace_id == approval.workspace_id)
        )
        step_number = int(data.get("step_number", -1))
        if enrollment is None or enrollment.status != "active" or enrollment.current_step != step_number:
            logger.info(
                "approval.sequence_email_stale",
                extra={"approval_id": str(approval.id), "enrollment_id": str(approval.entity_id)},
            )
            return

        self.gateway.send_email(
            session,
            SendEmailRequest(
                workspace_id=approval.workspace_id,
                lead_id=uuid.UUID(str(data["lead_id"])),
                subject=str(data.get("subject", "")),
                body=str(data.get("body", "")),
            ),
        )
        mark_email_step_sent(enrollment, step_number)
        session.add(enrollment)

    def _load_pending(self, session: Session, actor: ActorUser, approval_id: uuid.UUID) -> ApprovalRequest:
        approval = self.get_request(session, actor.require_workspace(), approval_id)
        if approval.status != "pending":
            raise InvalidStateTransition(f"Approval request is already {approval.status}")
        return approval

    def _resolve(self, approval: ApprovalRequest, actor: ActorUser, status: str, note: str | None) -> None:
        approval.status = status
        approval.resolved_by = actor.user_id
        approval.resolved_at = utcnow()
        approval.resolution_note = note

    def _after_resolution(self, actor: ActorUser, approval: ApprovalRequest, status: str) -> None:
        observe_approval(approval.entity_type, status)
        audit.record(
            actor.user_id,
            "approval_request",
            str(approval.id),
            status,
            {"status": "pending"},
            {"status": status},
            workspace_id=str(approval.workspace_id),
            correlation_id=actor.correlation_id,
        )
        logger.info(
            "approval.resolved",
            extra={"approval_id": str(approval.id), "status": status, "workspace_id": str(approval.workspace_id)},
        )


approval_service = ApprovalService()

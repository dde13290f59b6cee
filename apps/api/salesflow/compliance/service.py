from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salesflow.compliance.models import SuppressionEntry
from salesflow.compliance.schemas import BounceResult, SendDecision, UnsubscribeResult
from salesflow.core.clock import utcnow
from salesflow.core.config import get_settings
from salesflow.crm.models import Lead
from salesflow.errors import InvalidUnsubscribeToken
from salesflow.sequences.service import stop_active_enrollments


logger = logging.getLogger("salesflow.compliance")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _token_secret() -> str:
    settings = get_settings()
    return settings.unsubscribe_token_secret or settings.jwt_secret


def generate_unsubscribe_token(workspace_id: uuid.UUID, email: str) -> str:
    raw = f"{workspace_id}:{normalize_email(email)}:{_token_secret()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def verify_unsubscribe_token(workspace_id: uuid.UUID, email: str, token: str) -> bool:
    expected = generate_unsubscribe_token(workspace_id, email)
    return hmac.compare_digest(expected, token)


@dataclass(slots=True)
class ComplianceService:
    """Decides whether an address may be emailed and records opt-outs.

    Suppression entries are keyed by (workspace, lower-cased email). Lead flags
    are applied to every lead sharing the address, since one address may back
    several lead records.
    """

    def check_can_send(self, session: Session, workspace_id: uuid.UUID, email: str) -> SendDecision:
        normalized = normalize_email(email)
        entry = session.scalar(
            select(SuppressionEntry).where(
                SuppressionEntry.workspace_id == workspace_id,
                SuppressionEntry.email == normalized,
            )
        )
        if entry is not None:
            return SendDecision(can_send=False, reason=f"Suppressed: {entry.reason}")

        leads = self._matching_leads(session, workspace_id, normalized)
        if any(lead.is_bounced for lead in leads):
            return SendDecision(can_send=False, reason="Email bounced")
        if any(lead.is_unsubscribed for lead in leads):
            return SendDecision(can_send=False, reason="Unsubscribed")
        return SendDecision(can_send=True)

    def suppress(self, session: Session, workspace_id: uuid.UUID, email: str, reason: str = "manual") -> SuppressionEntry:
        """Upsert the suppression entry; the latest reason wins. Flushes only."""
        normalized = normalize_email(email)
        entry = session.scalar(
            select(SuppressionEntry).where(
                SuppressionEntry.workspace_id == workspace_id,
                SuppressionEntry.email == normalized,
            )
        )
        if entry is None:
            entry = SuppressionEntry(workspace_id=workspace_id, email=normalized, reason=reason)
        else:
            entry.reason = reason
        session.add(entry)
        session.flush()
        return entry

    def add_suppression(self, session: Session, workspace_id: uuid.UUID, email: str, reason: str = "manual") -> SuppressionEntry:
        entry = self.suppress(session, workspace_id, email, reason)
        session.commit()
        session.refresh(entry)
        return entry

    def list_suppressions(self, session: Session, workspace_id: uuid.UUID) -> list[SuppressionEntry]:
        return list(
            session.scalars(
                select(SuppressionEntry)
                .where(SuppressionEntry.workspace_id == workspace_id)
                .order_by(SuppressionEntry.created_at.desc())
            )
        )

    def handle_unsubscribe(self, session: Session, workspace_id: uuid.UUID, email: str) -> UnsubscribeResult:
        normalized = normalize_email(email)
        now = utcnow()
        try:
            self.suppress(session, workspace_id, normalized, reason="unsubscribed")
            leads = self._matching_leads(session, workspace_id, normalized)
            for lead in leads:
                lead.is_unsubscribed = True
                session.add(lead)

            stopped = stop_active_enrollments(session, [lead.id for lead in leads], "unsubscribed", now)
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info(
            "compliance.unsubscribed",
            extra={"workspace_id": str(workspace_id), "count": stopped},
        )
        return UnsubscribeResult(email=normalized, leads_updated=len(leads), enrollments_stopped=stopped)

    def handle_bounce(self, session: Session, workspace_id: uuid.UUID, email: str) -> BounceResult:
        normalized = normalize_email(email)
        try:
            self.suppress(session, workspace_id, normalized, reason="bounced")
            leads = self._matching_leads(session, workspace_id, normalized)
            for lead in leads:
                lead.is_bounced = True
                session.add(lead)
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info("compliance.bounced", extra={"workspace_id": str(workspace_id)})
        return BounceResult(email=normalized, leads_updated=len(leads))

    def unsubscribe_with_token(self, session: Session, workspace_id: uuid.UUID, email: str, token: str) -> UnsubscribeResult:
        if not verify_unsubscribe_token(workspace_id, email, token):
            raise InvalidUnsubscribeToken("Invalid unsubscribe token")
        return self.handle_unsubscribe(session, workspace_id, email)

    def _matching_leads(self, session: Session, workspace_id: uuid.UUID, normalized_email: str) -> list[Lead]:
        return list(
            session.scalars(
                select(Lead).where(
                    Lead.workspace_id == workspace_id,
                    func.lower(Lead.email) == normalized_email,
                )
            )
        )


compliance_service = ComplianceService()

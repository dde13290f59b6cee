from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parseaddr
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salesflow import events
from salesflow.compliance.service import ComplianceService, normalize_email
from salesflow.core.clock import as_utc, start_of_day, utcnow
from salesflow.core.config import get_settings
from salesflow.crm.models import Activity, Lead
from salesflow.errors import AccountNotFound, DailyLimitExceeded, LeadNotFound, SendSuppressed, error_message
from salesflow.messaging.models import EmailAccount, EmailMessage
from salesflow.messaging.providers import ProviderRegistry, default_provider_registry
from salesflow.messaging.schemas import EmailAccountCreate, SendEmailRequest, SyncResult, SyncSweepResult
from salesflow.metrics import observe_email_sent, observe_inbound_ingested, observe_send_blocked
from salesflow.otel import domain_span
from salesflow.sequences.service import stop_active_enrollments


logger = logging.getLogger("salesflow.messaging")
TRACER_NAME = "salesflow.messaging"


@dataclass(slots=True)
class MessagingGateway:
    """Single outbound/inbound email path for every automation.

    ``send_email`` only flushes: the caller owns the transaction so the message
    row, counters, lead stamps and activity land together with whatever state
    change the caller makes (for example advancing an enrollment).
    """

    providers: ProviderRegistry = field(default_factory=default_provider_registry)
    compliance: ComplianceService = field(default_factory=ComplianceService)

    def create_account(self, session: Session, workspace_id: uuid.UUID, payload: EmailAccountCreate) -> EmailAccount:
        settings = get_settings()
        account = EmailAccount(
            workspace_id=workspace_id,
            email=normalize_email(payload.email),
            provider=payload.provider.lower(),
            access_token=payload.access_token,
            is_active=payload.is_active,
            daily_limit=payload.daily_limit if payload.daily_limit is not None else settings.email_default_daily_limit,
        )
        session.add(account)
        session.commit()
        session.refresh(account)
        return account

    def list_accounts(self, session: Session, workspace_id: uuid.UUID) -> list[EmailAccount]:
        return list(
            session.scalars(
                select(EmailAccount)
                .where(EmailAccount.workspace_id == workspace_id)
                .order_by(EmailAccount.created_at.asc(), EmailAccount.id.asc())
            )
        )

    def send_email(self, session: Session, request: SendEmailRequest) -> EmailMessage:
        lead = session.scalar(select(Lead).where(Lead.id == request.lead_id, Lead.workspace_id == request.workspace_id))
        if lead is None or not lead.email:
            raise LeadNotFound("Lead email not found")

        account = self._resolve_account(session, request.workspace_id, request.email_account_id)
        now = utcnow()
        self._roll_daily_counter(account, now)

        if account.sent_today >= account.daily_limit:
            observe_send_blocked("daily_limit")
            raise DailyLimitExceeded("Daily email limit reached")

        decision = self.compliance.check_can_send(session, request.workspace_id, lead.email)
        if not decision.can_send:
            observe_send_blocked("suppressed")
            raise SendSuppressed(decision.reason or "Suppressed")

        provider = self.providers.get(account.provider)
        with domain_span(
            TRACER_NAME,
            "messaging.send_email",
            workspace_id=request.workspace_id,
            lead_id=lead.id,
            email_account_id=account.id,
        ) as span:
            result = provider.send(account.access_token, lead.email, request.subject, request.body)
            span.set_attribute("message_id", result.message_id)

        message = EmailMessage(
            workspace_id=request.workspace_id,
            lead_id=lead.id,
            email_account_id=account.id,
            direction="outbound",
            subject=request.subject,
            body=request.body,
            provider_message_id=result.message_id,
            thread_id=result.thread_id,
            status="sent",
            sent_at=now,
        )
        session.add(message)

        account.sent_today += 1
        session.add(account)

        lead.last_contacted_at = now
        lead.last_activity_at = now
        if lead.first_contact_at is None:
            lead.first_contact_at = now
        session.add(lead)
        session.flush()

        session.add(
            Activity(
                workspace_id=request.workspace_id,
                lead_id=lead.id,
                activity_type="email_sent",
                title=f"Email sent: {request.subject}",
                activity_metadata={"email_id": str(message.id)},
            )
        )
        session.flush()

        observe_email_sent(account.provider)
        logger.info(
            "messaging.email_sent",
            extra={"workspace_id": str(request.workspace_id), "lead_id": str(lead.id), "account_id": str(account.id)},
        )
        return message

    def sync_inbox(self, session: Session, email_account_id: uuid.UUID) -> SyncResult:
        account = session.get(EmailAccount, email_account_id)
        if account is None:
            raise AccountNotFound("Email account not found")

        provider = self.providers.get(account.provider)
        result = SyncResult(email_account_id=account.id)
        envelopes: list[dict[str, Any]] = []
        now = utcnow()

        with domain_span(
            TRACER_NAME, "messaging.sync_inbox", workspace_id=account.workspace_id, email_account_id=account.id
        ) as span:
            try:
                inbound = provider.fetch_recent(account.access_token)
                result.fetched = len(inbound)
                seen: set[str] = set()
                for item in inbound:
                    if item.message_id in seen or self._message_exists(session, item.message_id):
                        result.skipped_duplicates += 1
                        continue
                    seen.add(item.message_id)

                    sender = normalize_email(parseaddr(item.sender)[1] or item.sender)
                    lead = session.scalar(
                        select(Lead)
                        .where(Lead.workspace_id == account.workspace_id, func.lower(Lead.email) == sender)
                        .order_by(Lead.created_at.asc())
                        .limit(1)
                    )
                    if lead is None:
                        result.unmatched += 1
                        continue

                    message = EmailMessage(
                        workspace_id=account.workspace_id,
                        lead_id=lead.id,
                        email_account_id=account.id,
                        direction="inbound",
                        subject=item.subject,
                        body=item.body,
                        provider_message_id=item.message_id,
                        thread_id=item.thread_id,
                        in_reply_to=item.in_reply_to,
                        status="delivered",
                        sent_at=item.received_at,
                    )
                    session.add(message)
                    lead.last_activity_at = now
                    session.add(lead)
                    session.flush()

                    session.add(
                        Activity(
                            workspace_id=account.workspace_id,
                            lead_id=lead.id,
                            activity_type="email_received",
                            title=f"Reply received: {item.subject}",
                            activity_metadata={"email_id": str(message.id)},
                        )
                    )
                    result.enrollments_stopped += stop_active_enrollments(session, [lead.id], "replied", now)
                    result.ingested += 1
                    envelopes.append(
                        events.build_envelope(
                            "email.received",
                            account.workspace_id,
                            {
                                "lead_id": str(lead.id),
                                "email_message_id": str(message.id),
                                "subject": item.subject,
                                "from": sender,
                            },
                        )
                    )

                account.last_sync_at = now
                account.sync_error = None
                session.add(account)
                session.commit()
            except Exception:
                session.rollback()
                raise
            span.set_attribute("ingested", result.ingested)

        observe_inbound_ingested(result.ingested)
        logger.info(
            "messaging.inbox_synced",
            extra={"account_id": str(email_account_id), "count": result.ingested},
        )
        for envelope in envelopes:
            events.publish(envelope)
        return result

    def sync_all_accounts(self, session: Session, now: datetime | None = None) -> SyncSweepResult:
        sweep = SyncSweepResult()
        account_ids = list(session.scalars(select(EmailAccount.id).where(EmailAccount.is_active.is_(True))))
        sweep.accounts = len(account_ids)
        for account_id in account_ids:
            try:
                self.sync_inbox(session, account_id)
                sweep.succeeded += 1
            except Exception as exc:
                sweep.failed += 1
                logger.exception(
                    "messaging.inbox_sync_failed",
                    extra={"account_id": str(account_id), "error": error_message(exc)},
                )
                account = session.get(EmailAccount, account_id)
                if account is not None:
                    account.sync_error = error_message(exc)[:1000]
                    session.add(account)
                    session.commit()

        sweep.counters_reset = self.reset_daily_counters(session, now)
        return sweep

    def reset_daily_counters(self, session: Session, now: datetime | None = None) -> int:
        current = now or utcnow()
        accounts = list(session.scalars(select(EmailAccount)))
        reset = 0
        for account in accounts:
            if self._roll_daily_counter(account, current):
                session.add(account)
                reset += 1
        session.commit()
        return reset

    def _resolve_account(self, session: Session, workspace_id: uuid.UUID, email_account_id: uuid.UUID | None) -> EmailAccount:
        query = select(EmailAccount).where(
            EmailAccount.workspace_id == workspace_id,
            EmailAccount.is_active.is_(True),
        )
        if email_account_id is not None:
            query = query.where(EmailAccount.id == email_account_id)
        account = session.scalar(query.order_by(EmailAccount.created_at.asc(), EmailAccount.id.asc()).limit(1))
        if account is None:
            raise AccountNotFound("No active email account found")
        return account

    def _roll_daily_counter(self, account: EmailAccount, now: datetime) -> bool:
        last_reset = as_utc(account.last_reset_at)
        if last_reset is not None and last_reset >= start_of_day(now):
            return False
        account.sent_today = 0
        account.last_reset_at = now
        return True

    def _message_exists(self, session: Session, provider_message_id: str) -> bool:
        existing = session.scalar(
            select(EmailMessage.id).where(EmailMessage.provider_message_id == provider_message_id).limit(1)
        )
        return existing is not None


messaging_gateway = MessagingGateway()

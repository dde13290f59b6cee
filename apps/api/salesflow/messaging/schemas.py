from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


MessageDirection = Literal["outbound", "inbound"]


class SendEmailRequest(BaseModel):
    workspace_id: UUID
    lead_id: UUID
    subject: str
    body: str
    email_account_id: UUID | None = None


class SendEmailPayload(BaseModel):
    lead_id: UUID
    subject: str = Field(min_length=1, max_length=998)
    body: str
    email_account_id: UUID | None = None


class EmailAccountCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    provider: str = Field(min_length=1, max_length=32)
    access_token: str | None = None
    daily_limit: int | None = Field(default=None, ge=0)
    is_active: bool = True


class EmailAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    email: str
    provider: str
    is_active: bool
    daily_limit: int
    sent_today: int
    last_reset_at: datetime
    last_sync_at: datetime | None
    sync_error: str | None
    created_at: datetime


class EmailMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    lead_id: UUID
    email_account_id: UUID
    direction: MessageDirection
    subject: str
    body: str
    provider_message_id: str
    thread_id: str | None
    in_reply_to: str | None
    status: str
    sent_at: datetime


class SyncResult(BaseModel):
    email_account_id: UUID
    fetched: int = 0
    ingested: int = 0
    skipped_duplicates: int = 0
    unmatched: int = 0
    enrollments_stopped: int = 0


class SyncSweepResult(BaseModel):
    accounts: int = 0
    succeeded: int = 0
    failed: int = 0
    counters_reset: int = 0

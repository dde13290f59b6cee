from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SendDecision(BaseModel):
    can_send: bool
    reason: str | None = None


class EmailRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class SuppressionCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    reason: str = Field(default="manual", min_length=1, max_length=64)


class SuppressionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    email: str
    reason: str
    created_at: datetime
    updated_at: datetime


class UnsubscribeResult(BaseModel):
    email: str
    leads_updated: int
    enrollments_stopped: int


class BounceResult(BaseModel):
    email: str
    leads_updated: int


class PublicUnsubscribeRequest(BaseModel):
    workspace_id: UUID
    email: str = Field(min_length=3, max_length=320)
    token: str = Field(min_length=64, max_length=64)

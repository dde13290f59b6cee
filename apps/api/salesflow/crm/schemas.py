from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LeadCreate(BaseModel):
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    full_name: str | None = Field(default=None, max_length=256)
    company: str | None = Field(default=None, max_length=256)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    stage_id: str | None = Field(default=None, max_length=64)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class LeadStageUpdate(BaseModel):
    stage_id: str = Field(min_length=1, max_length=64)


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    first_name: str | None
    last_name: str | None
    full_name: str | None
    company: str | None
    email: str | None
    phone: str | None
    stage_id: str | None
    is_bounced: bool
    is_unsubscribed: bool
    custom_fields: dict[str, Any]
    first_contact_at: datetime | None
    last_contacted_at: datetime | None
    last_activity_at: datetime | None
    created_at: datetime


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    lead_id: UUID | None
    title: str
    description: str | None
    task_type: str
    priority: str
    status: str
    due_at: datetime | None
    task_metadata: dict[str, Any] = Field(serialization_alias="metadata")
    completed_at: datetime | None
    created_at: datetime

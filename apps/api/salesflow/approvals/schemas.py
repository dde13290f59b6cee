from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ApprovalStatus = Literal["pending", "approved", "rejected"]


class ApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    request_type: str = Field(serialization_alias="type")
    entity_type: str
    entity_id: UUID
    requested_by: str
    status: ApprovalStatus
    data: dict[str, Any]
    resolved_by: str | None
    resolved_at: datetime | None
    resolution_note: str | None
    created_at: datetime


class ApprovalResolve(BaseModel):
    note: str | None = Field(default=None, max_length=2000)

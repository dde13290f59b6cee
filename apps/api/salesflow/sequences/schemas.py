from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from salesflow.workflows.schemas import AutomationMode, WorkflowCondition


EnrollmentStatus = Literal["active", "completed", "stopped"]
DelayUnit = Literal["minutes", "hours", "days", "weeks"]


class EmailStepCreate(BaseModel):
    step_type: Literal["email"] = "email"
    subject: str = Field(min_length=1, max_length=998)
    body: str = Field(min_length=1)


class DelayStepCreate(BaseModel):
    step_type: Literal["delay"] = "delay"
    delay_value: int = Field(ge=0)
    delay_unit: DelayUnit = "days"


class ConditionStepCreate(BaseModel):
    step_type: Literal["condition"] = "condition"
    conditions: list[WorkflowCondition] = Field(default_factory=list)


SequenceStepCreate = Annotated[
    Union[EmailStepCreate, DelayStepCreate, ConditionStepCreate],
    Field(discriminator="step_type"),
]


class SequenceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    description: str | None = None
    automation_mode: AutomationMode = "assisted"
    steps: list[SequenceStepCreate] = Field(default_factory=list)


class SequenceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=256)
    description: str | None = None
    automation_mode: AutomationMode | None = None
    is_active: bool | None = None


class SequenceStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_number: int
    step_type: str
    subject: str | None
    body: str | None
    delay_value: int | None
    delay_unit: str | None
    conditions: list[dict]


class SequenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    name: str
    description: str | None
    automation_mode: AutomationMode
    is_active: bool
    created_at: datetime
    updated_at: datetime
    steps: list[SequenceStepRead] = Field(default_factory=list)
    active_enrollment_count: int = 0


class EnrollmentCreate(BaseModel):
    lead_id: UUID


class EnrollmentStop(BaseModel):
    reason: str = Field(default="manual", min_length=1, max_length=64)


class EnrollmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sequence_id: UUID
    lead_id: UUID
    status: EnrollmentStatus
    current_step: int
    emails_sent: int
    awaiting_step: int | None
    step_entered_at: datetime
    stop_reason: str | None
    completed_at: datetime | None
    stopped_at: datetime | None
    created_at: datetime


class SweepResult(BaseModel):
    processed: int = 0
    advanced: int = 0
    completed: int = 0
    waiting: int = 0
    failed: int = 0

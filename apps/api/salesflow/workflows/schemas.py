from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    TypeAdapter,
    field_validator,
)


AutomationMode = Literal["manual", "assisted", "autopilot"]
WorkflowRunStatus = Literal["running", "waiting_approval", "completed", "failed"]
ConditionOperator = Literal["equals", "not_equals", "contains", "greater_than", "less_than", "exists"]


class WorkflowCondition(BaseModel):
    """``operator`` outside ``ConditionOperator`` is stored as-is and never matches."""

    field: str = Field(min_length=1, max_length=256)
    operator: str = Field(min_length=1, max_length=64)
    value: Any = None


class ActionBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    id: str | None = None
    continue_on_error: bool = Field(
        default=False,
        validation_alias=AliasChoices("continue_on_error", "continueOnError"),
    )


class SendEmailAction(ActionBase):
    type: Literal["send_email"] = "send_email"
    subject: str = ""
    body: str = ""
    email_account_id: UUID | None = Field(
        default=None,
        validation_alias=AliasChoices("email_account_id", "emailAccountId"),
    )


class EnrollSequenceAction(ActionBase):
    type: Literal["enroll_sequence"] = "enroll_sequence"
    sequence_id: UUID = Field(validation_alias=AliasChoices("sequence_id", "sequenceId"))


class CreateTaskAction(ActionBase):
    type: Literal["create_task"] = "create_task"
    title: str = ""
    description: str | None = None
    task_type: str = Field(default="follow_up", validation_alias=AliasChoices("task_type", "taskType"))
    priority: str = "medium"
    due_in_days: int | None = Field(default=None, ge=0, validation_alias=AliasChoices("due_in_days", "dueInDays"))


class ChangeStageAction(ActionBase):
    type: Literal["change_stage"] = "change_stage"
    stage_id: str = Field(min_length=1, validation_alias=AliasChoices("stage_id", "stageId"))


class GenerateProposalAction(ActionBase):
    type: Literal["generate_proposal"] = "generate_proposal"
    title: str | None = None


class UnknownAction(ActionBase):
    """Any action type without a handler; kept verbatim, fails when executed."""


KnownAction = Annotated[
    Union[SendEmailAction, EnrollSequenceAction, CreateTaskAction, ChangeStageAction, GenerateProposalAction],
    Field(discriminator="type"),
]
_known_action_adapter: TypeAdapter[Any] = TypeAdapter(KnownAction)
KNOWN_ACTION_TYPES: frozenset[str] = frozenset(
    {"send_email", "enroll_sequence", "create_task", "change_stage", "generate_proposal"}
)


def parse_action(raw: Mapping[str, Any] | ActionBase) -> ActionBase:
    if isinstance(raw, ActionBase):
        return raw
    action_type = raw.get("type")
    if isinstance(action_type, str) and action_type in KNOWN_ACTION_TYPES:
        return _known_action_adapter.validate_python(dict(raw))
    payload = dict(raw)
    payload["type"] = str(action_type or "")
    return UnknownAction.model_validate(payload)


def dump_action(action: ActionBase) -> dict[str, Any]:
    return action.model_dump(mode="json", exclude_none=True)


class WorkflowDefinition(BaseModel):
    conditions: list[WorkflowCondition] = Field(default_factory=list)
    actions: list[SerializeAsAny[ActionBase]] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def _parse_actions(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [parse_action(item) if isinstance(item, (Mapping, ActionBase)) else item for item in value]

    def to_json(self) -> dict[str, Any]:
        return {
            "conditions": [condition.model_dump(mode="json") for condition in self.conditions],
            "actions": [dump_action(action) for action in self.actions],
        }


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    description: str | None = None
    trigger_type: str = Field(min_length=1, max_length=128)
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    automation_mode: AutomationMode = "assisted"
    definition: WorkflowDefinition = Field(default_factory=WorkflowDefinition)


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=256)
    description: str | None = None
    trigger_type: str | None = Field(default=None, min_length=1, max_length=128)
    trigger_config: dict[str, Any] | None = None
    automation_mode: AutomationMode | None = None
    definition: WorkflowDefinition | None = None
    is_active: bool | None = None


class WorkflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    name: str
    description: str | None
    trigger_type: str
    trigger_config: dict[str, Any]
    automation_mode: AutomationMode
    definition: dict[str, Any]
    is_active: bool
    last_run_at: datetime | None
    created_at: datetime
    updated_at: datetime
    run_count: int = 0


class WorkflowExecuteRequest(BaseModel):
    trigger_data: dict[str, Any] = Field(default_factory=dict)


class WorkflowRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: UUID
    workflow_id: UUID
    status: WorkflowRunStatus
    automation_mode: AutomationMode
    trigger_data: dict[str, Any]
    execution_log: list[dict[str, Any]]
    next_action_index: int
    error: str | None
    started_at: datetime
    completed_at: datetime | None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class WorkflowRunPage(BaseModel):
    runs: list[WorkflowRunRead]
    pagination: Pagination

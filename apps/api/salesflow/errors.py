"""Domain errors raised by the automation services.

Each error is an ``HTTPException`` so service code can raise it directly and the
routers can render it with the standard error envelope. ``code`` is the stable
machine-readable identifier that ends up in that envelope.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class SalesflowError(HTTPException):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "salesflow_error"

    def __init__(self, detail: Any = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail or self.code)

    @property
    def message(self) -> str:
        return str(self.detail)


class NotFoundError(SalesflowError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = "not_found"


class WorkflowNotFound(NotFoundError):
    code = "workflow_not_found"


class WorkflowRunNotFound(NotFoundError):
    code = "workflow_run_not_found"


class SequenceNotFound(NotFoundError):
    code = "sequence_not_found"


class EnrollmentNotFound(NotFoundError):
    code = "enrollment_not_found"


class LeadNotFound(NotFoundError):
    code = "lead_not_found"


class AccountNotFound(NotFoundError):
    code = "email_account_not_found"


class ApprovalNotFound(NotFoundError):
    code = "approval_not_found"


class TaskNotFound(NotFoundError):
    code = "task_not_found"


class ConflictError(SalesflowError):
    status_code_default = status.HTTP_409_CONFLICT
    code = "conflict"


class AlreadyEnrolled(ConflictError):
    code = "already_enrolled"


class InvalidStateTransition(ConflictError):
    code = "invalid_state_transition"


class PolicyBlock(SalesflowError):
    """A send was refused by compliance or capacity policy."""

    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "policy_block"


class SendSuppressed(PolicyBlock):
    code = "send_suppressed"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class DailyLimitExceeded(PolicyBlock):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code = "daily_limit_exceeded"


class ProviderNotSupported(PolicyBlock):
    code = "provider_not_supported"


class ActionFailure(SalesflowError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "action_failed"


class UnknownActionType(ActionFailure):
    code = "unknown_action_type"

    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class WorkflowActionError(ActionFailure):
    code = "workflow_action_error"


class ValidationFailed(SalesflowError):
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_failed"


class InvalidSequenceDefinition(ValidationFailed):
    code = "invalid_sequence_definition"


class InvalidWorkflowDefinition(ValidationFailed):
    code = "invalid_workflow_definition"


class WorkspaceRequired(SalesflowError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "workspace_required"


class Forbidden(SalesflowError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class InvalidUnsubscribeToken(Forbidden):
    code = "invalid_unsubscribe_token"


def error_message(exc: BaseException) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return str(exc) or exc.__class__.__name__

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import ActorUser, get_current_user, http_error_response, require_permission
from salesflow.approvals.schemas import ApprovalRead, ApprovalResolve
from salesflow.approvals.service import approval_service
from salesflow.core.database import get_db


router = APIRouter(prefix="/api/approvals", tags=["approvals"])


@router.get("", response_model=list[ApprovalRead])
def list_approvals(
    request: Request,
    approval_status: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ApprovalRead] | JSONResponse:
    try:
        require_permission(user, "approvals.read")
        approvals = approval_service.list_requests(db, user.require_workspace(), approval_status)
        return [ApprovalRead.model_validate(approval) for approval in approvals]
    except HTTPException as exc:
        return http_error_response(request, exc, "approval_list_failed")


@router.post("/{approval_id}/approve", response_model=ApprovalRead)
def approve(
    request: Request,
    approval_id: uuid.UUID,
    dto: ApprovalResolve,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ApprovalRead | JSONResponse:
    try:
        require_permission(user, "approvals.resolve")
        return ApprovalRead.model_validate(approval_service.approve(db, user, approval_id, dto.note))
    except HTTPException as exc:
        return http_error_response(request, exc, "approval_approve_failed")


@router.post("/{approval_id}/reject", response_model=ApprovalRead)
def reject(
    request: Request,
    approval_id: uuid.UUID,
    dto: ApprovalResolve,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ApprovalRead | JSONResponse:
    try:
        require_permission(user, "approvals.resolve")
        return ApprovalRead.model_validate(approval_service.reject(db, user, approval_id, dto.note))
    except HTTPException as exc:
        return http_error_response(request, exc, "approval_reject_failed")

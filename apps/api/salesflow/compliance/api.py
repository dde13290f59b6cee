from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import ActorUser, get_current_user, http_error_response, require_permission
from salesflow.compliance.schemas import (
    BounceResult,
    EmailRequest,
    PublicUnsubscribeRequest,
    SendDecision,
    SuppressionCreate,
    SuppressionRead,
    UnsubscribeResult,
)
from salesflow.compliance.service import compliance_service
from salesflow.core.database import get_db


router = APIRouter(prefix="/api/compliance", tags=["compliance"])


@router.get("/check", response_model=SendDecision)
def check_can_send(
    request: Request,
    email: str = Query(min_length=3),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SendDecision | JSONResponse:
    try:
        require_permission(user, "compliance.read")
        return compliance_service.check_can_send(db, user.require_workspace(), email)
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_check_failed")


@router.post("/unsubscribe", response_model=UnsubscribeResult)
def unsubscribe(
    request: Request,
    dto: EmailRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UnsubscribeResult | JSONResponse:
    try:
        require_permission(user, "compliance.manage")
        return compliance_service.handle_unsubscribe(db, user.require_workspace(), dto.email)
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_unsubscribe_failed")


@router.post("/bounce", response_model=BounceResult)
def bounce(
    request: Request,
    dto: EmailRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> BounceResult | JSONResponse:
    try:
        require_permission(user, "compliance.manage")
        return compliance_service.handle_bounce(db, user.require_workspace(), dto.email)
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_bounce_failed")


@router.get("/suppressions", response_model=list[SuppressionRead])
def list_suppressions(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SuppressionRead] | JSONResponse:
    try:
        require_permission(user, "compliance.read")
        entries = compliance_service.list_suppressions(db, user.require_workspace())
        return [SuppressionRead.model_validate(entry) for entry in entries]
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_suppression_list_failed")


@router.post("/suppressions", response_model=SuppressionRead, status_code=status.HTTP_201_CREATED)
def add_suppression(
    request: Request,
    dto: SuppressionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SuppressionRead | JSONResponse:
    try:
        require_permission(user, "compliance.manage")
        entry = compliance_service.add_suppression(db, user.require_workspace(), dto.email, dto.reason)
        return SuppressionRead.model_validate(entry)
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_suppression_create_failed")


@router.post("/public/unsubscribe", response_model=UnsubscribeResult)
def public_unsubscribe(
    request: Request,
    dto: PublicUnsubscribeRequest,
    db: Session = Depends(get_db),
) -> UnsubscribeResult | JSONResponse:
    try:
        return compliance_service.unsubscribe_with_token(db, dto.workspace_id, dto.email, dto.token)
    except HTTPException as exc:
        return http_error_response(request, exc, "compliance_unsubscribe_failed")

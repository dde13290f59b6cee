from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import ActorUser, get_current_user, http_error_response, require_permission
from salesflow.core.database import get_db
from salesflow.errors import AccountNotFound
from salesflow.messaging.schemas import (
    EmailAccountCreate,
    EmailAccountRead,
    EmailMessageRead,
    SendEmailPayload,
    SendEmailRequest,
    SyncResult,
)
from salesflow.messaging.service import messaging_gateway


router = APIRouter(prefix="/api/messaging", tags=["messaging"])


@router.post("/accounts", response_model=EmailAccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    dto: EmailAccountCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailAccountRead | JSONResponse:
    try:
        require_permission(user, "messaging.manage")
        return EmailAccountRead.model_validate(messaging_gateway.create_account(db, user.require_workspace(), dto))
    except HTTPException as exc:
        return http_error_response(request, exc, "email_account_create_failed")


@router.get("/accounts", response_model=list[EmailAccountRead])
def list_accounts(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[EmailAccountRead] | JSONResponse:
    try:
        require_permission(user, "messaging.read")
        accounts = messaging_gateway.list_accounts(db, user.require_workspace())
        return [EmailAccountRead.model_validate(account) for account in accounts]
    except HTTPException as exc:
        return http_error_response(request, exc, "email_account_list_failed")


@router.post("/send", response_model=EmailMessageRead, status_code=status.HTTP_201_CREATED)
def send_email(
    request: Request,
    dto: SendEmailPayload,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EmailMessageRead | JSONResponse:
    try:
        require_permission(user, "messaging.send")
        message = messaging_gateway.send_email(
            db,
            SendEmailRequest(workspace_id=user.require_workspace(), **dto.model_dump()),
        )
        db.commit()
        db.refresh(message)
        return EmailMessageRead.model_validate(message)
    except HTTPException as exc:
        db.rollback()
        return http_error_response(request, exc, "email_send_failed")


@router.post("/accounts/{account_id}/sync", response_model=SyncResult)
def sync_account(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SyncResult | JSONResponse:
    try:
        require_permission(user, "messaging.manage")
        workspace_id = user.require_workspace()
        if not any(account.id == account_id for account in messaging_gateway.list_accounts(db, workspace_id)):
            raise AccountNotFound("Email account not found")
        return messaging_gateway.sync_inbox(db, account_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "email_sync_failed")

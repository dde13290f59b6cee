from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import ActorUser, get_current_user, http_error_response, require_permission
from salesflow.core.database import get_db
from salesflow.crm.schemas import LeadCreate, LeadRead, LeadStageUpdate, TaskRead
from salesflow.crm.service import lead_service, task_service


leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        return LeadRead.model_validate(lead_service.create_lead(db, user, dto))
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_create_failed")


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return LeadRead.model_validate(lead_service.get_lead(db, user.require_workspace(), lead_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_get_failed")


@leads_router.patch("/{lead_id}/stage", response_model=LeadRead)
def change_lead_stage(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStageUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        return LeadRead.model_validate(lead_service.change_stage(db, user, lead_id, dto.stage_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_stage_change_failed")


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    task_status: str | None = Query(default=None, alias="status"),
    lead_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskRead] | JSONResponse:
    try:
        require_permission(user, "tasks.read")
        tasks = task_service.list_tasks(db, user.require_workspace(), status=task_status, lead_id=lead_id)
        return [TaskRead.model_validate(task) for task in tasks]
    except HTTPException as exc:
        return http_error_response(request, exc, "task_list_failed")


@tasks_router.post("/{task_id}/complete", response_model=TaskRead)
def complete_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "tasks.write")
        return TaskRead.model_validate(task_service.complete_task(db, user, task_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "task_complete_failed")

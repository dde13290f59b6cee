from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import (
    ActorUser,
    get_current_user,
    http_error_response,
    require_any_permission,
    require_permission,
)
from salesflow.core.database import get_db
from salesflow.workflows.schemas import (
    WorkflowCreate,
    WorkflowExecuteRequest,
    WorkflowRead,
    WorkflowRunPage,
    WorkflowRunRead,
    WorkflowUpdate,
)
from salesflow.workflows.service import workflow_service


router = APIRouter(prefix="/api/workflows", tags=["workflows"])


@router.post("", response_model=WorkflowRead, status_code=status.HTTP_201_CREATED)
def create_workflow(
    request: Request,
    dto: WorkflowCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRead | JSONResponse:
    try:
        require_permission(user, "workflows.manage")
        return workflow_service.create_workflow(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_create_failed")


@router.get("", response_model=list[WorkflowRead])
def list_workflows(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[WorkflowRead] | JSONResponse:
    try:
        require_permission(user, "workflows.read")
        return workflow_service.list_workflows(db, user.require_workspace())
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_list_failed")


@router.patch("/{workflow_id}", response_model=WorkflowRead)
def update_workflow(
    request: Request,
    workflow_id: uuid.UUID,
    dto: WorkflowUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRead | JSONResponse:
    try:
        require_permission(user, "workflows.manage")
        return workflow_service.update_workflow(db, user, workflow_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_update_failed")


@router.post("/{workflow_id}/execute", response_model=WorkflowRunRead)
def execute_workflow(
    request: Request,
    workflow_id: uuid.UUID,
    dto: WorkflowExecuteRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRunRead | JSONResponse:
    try:
        require_any_permission(user, ["workflows.execute", "workflows.manage"])
        return WorkflowRunRead.model_validate(workflow_service.execute(db, user, workflow_id, dto.trigger_data))
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_execute_failed")


@router.get("/{workflow_id}/runs", response_model=WorkflowRunPage)
def list_workflow_runs(
    request: Request,
    workflow_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRunPage | JSONResponse:
    try:
        require_permission(user, "workflows.read")
        return workflow_service.list_runs(db, user.require_workspace(), workflow_id, page=page, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_runs_list_failed")


@router.get("/runs/{run_id}", response_model=WorkflowRunRead)
def get_workflow_run(
    request: Request,
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowRunRead | JSONResponse:
    try:
        require_permission(user, "workflows.read")
        return WorkflowRunRead.model_validate(workflow_service.get_run(db, user.require_workspace(), run_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "workflow_run_get_failed")

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salesflow.api.deps import ActorUser, get_current_user, http_error_response, require_permission
from salesflow.core.config import get_settings
from salesflow.core.database import get_db
from salesflow.sequences.engine import sequence_engine
from salesflow.sequences.schemas import (
    EnrollmentCreate,
    EnrollmentRead,
    EnrollmentStop,
    SequenceCreate,
    SequenceRead,
    SequenceUpdate,
    SweepResult,
)
from salesflow.sequences.service import sequence_service


router = APIRouter(prefix="/api/sequences", tags=["sequences"])


@router.post("", response_model=SequenceRead, status_code=status.HTTP_201_CREATED)
def create_sequence(
    request: Request,
    dto: SequenceCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SequenceRead | JSONResponse:
    try:
        require_permission(user, "sequences.manage")
        return sequence_service.create_sequence(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_create_failed")


@router.get("", response_model=list[SequenceRead])
def list_sequences(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SequenceRead] | JSONResponse:
    try:
        require_permission(user, "sequences.read")
        return sequence_service.list_sequences(db, user.require_workspace())
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_list_failed")


@router.patch("/{sequence_id}", response_model=SequenceRead)
def update_sequence(
    request: Request,
    sequence_id: uuid.UUID,
    dto: SequenceUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SequenceRead | JSONResponse:
    try:
        require_permission(user, "sequences.manage")
        return sequence_service.update_sequence(db, user, sequence_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_update_failed")


@router.post("/{sequence_id}/enrollments", response_model=EnrollmentRead, status_code=status.HTTP_201_CREATED)
def enroll_lead(
    request: Request,
    sequence_id: uuid.UUID,
    dto: EnrollmentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EnrollmentRead | JSONResponse:
    try:
        require_permission(user, "sequences.enroll")
        return EnrollmentRead.model_validate(sequence_service.enroll_lead(db, user, sequence_id, dto.lead_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_enroll_failed")


@router.post("/enrollments/{enrollment_id}/stop", response_model=EnrollmentRead)
def stop_enrollment(
    request: Request,
    enrollment_id: uuid.UUID,
    dto: EnrollmentStop,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EnrollmentRead | JSONResponse:
    try:
        require_permission(user, "sequences.enroll")
        return EnrollmentRead.model_validate(sequence_service.stop_enrollment(db, user, enrollment_id, dto.reason))
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_stop_failed")


@router.post("/process", response_model=SweepResult)
def process_sequences(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SweepResult | JSONResponse:
    try:
        require_permission(user, "sequences.process")
        return sequence_engine.process_enrollments(db, batch_size=get_settings().sequence_batch_size)
    except HTTPException as exc:
        return http_error_response(request, exc, "sequence_process_failed")

"""Enrollments router: enroll, look up, change status, adjust fee and follow its cascade."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.core.enums import EnrollmentStatus
from tuition_billing.core.exceptions import ServiceError
from tuition_billing.db.session import get_db

from .schemas import (
    AdjustFeeRequest,
    EnrollmentCreate,
    EnrollmentCreateResponse,
    EnrollmentResponse,
    EnrollmentStatusUpdate,
    FeeAdjustmentResponse,
    FeeCascadeJobResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


@router.post("", response_model=EnrollmentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    payload: EnrollmentCreate,
    db: AsyncSession = Depends(get_db),
) -> EnrollmentCreateResponse:
    try:
        return await service.create_enrollment(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("", response_model=List[EnrollmentResponse])
async def list_enrollments(
    student_sid: Optional[str] = Query(None),
    class_id: Optional[str] = Query(None),
    enrollment_status: Optional[EnrollmentStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> List[EnrollmentResponse]:
    return await service.list_enrollments(
        db,
        student_sid=student_sid,
        class_id=class_id,
        status_filter=enrollment_status,
    )


@router.get("/lookup", response_model=EnrollmentResponse)
async def get_enrollment(
    student_sid: str,
    class_id: str,
    db: AsyncSession = Depends(get_db),
) -> EnrollmentResponse:
    result = await service.get_enrollment(db, student_sid, class_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Enrollment not found")
    return result


@router.get("/cascades/{job_id}", response_model=FeeCascadeJobResponse)
async def get_fee_cascade(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeCascadeJobResponse:
    result = await service.get_fee_cascade(db, job_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fee cascade job not found")
    return result


@router.post("/cascades/{job_id}/retry", response_model=FeeAdjustmentResponse)
async def retry_fee_cascade(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeAdjustmentResponse:
    try:
        return await service.retry_fee_cascade(db, job_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment_by_id(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> EnrollmentResponse:
    result = await service.get_enrollment_by_id(db, enrollment_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Enrollment not found")
    return result


@router.patch("/{enrollment_id}/status", response_model=EnrollmentResponse)
async def update_enrollment_status(
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> EnrollmentResponse:
    try:
        return await service.update_enrollment_status(db, enrollment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put("/{enrollment_id}/adjusted-fee", response_model=FeeAdjustmentResponse)
async def set_adjusted_fee(
    enrollment_id: UUID,
    payload: AdjustFeeRequest,
    db: AsyncSession = Depends(get_db),
) -> FeeAdjustmentResponse:
    try:
        return await service.set_adjusted_fee(db, enrollment_id, payload.adjusted_fee)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

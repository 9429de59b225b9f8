"""Students router: the directory lookups billing depends on."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.core.exceptions import ServiceError
from tuition_billing.db.session import get_db

from .schemas import StudentCreate, StudentDeleteResponse, StudentResponse
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def register_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    try:
        return await service.register_student(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{sid}", response_model=StudentResponse)
async def get_student(
    sid: str,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    student = await service.get_student(db, sid)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return StudentResponse.model_validate(student)


@router.delete("/{sid}", response_model=StudentDeleteResponse)
async def delete_student(
    sid: str,
    db: AsyncSession = Depends(get_db),
) -> StudentDeleteResponse:
    try:
        return await service.delete_student(db, sid)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

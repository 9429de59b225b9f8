"""Payments router: create charge, list, mark paid, unmark, partial payment, monthly generation."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.core.enums import PaymentStatus
from tuition_billing.core.exceptions import ServiceError
from tuition_billing.db.session import get_db

from .schemas import (
    GenerateMonthlyRequest,
    GenerateMonthlyResponse,
    InvoiceSentRequest,
    MarkPaidRequest,
    PartialPaymentRequest,
    PaymentOutcome,
    PaymentRecordCreate,
    PaymentRecordListResponse,
    PaymentRecordResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("", response_model=PaymentRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_record(
    payload: PaymentRecordCreate,
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordResponse:
    try:
        return await service.create_payment_record(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("", response_model=PaymentRecordListResponse)
async def list_payment_records(
    student_sid: Optional[str] = Query(None),
    class_id: Optional[str] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None),
    overdue: Optional[bool] = Query(None, description="PENDING records past their due date"),
    invoice_sent: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordListResponse:
    try:
        return await service.list_payment_records(
            db,
            student_sid=student_sid,
            class_id=class_id,
            status_filter=payment_status,
            month=month,
            year=year,
            overdue=overdue,
            invoice_sent=invoice_sent,
            page=page,
            limit=limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/generate-monthly", response_model=GenerateMonthlyResponse)
async def generate_monthly_payments(
    payload: GenerateMonthlyRequest,
    db: AsyncSession = Depends(get_db),
) -> GenerateMonthlyResponse:
    try:
        return await service.generate_monthly_payments(db, payload.month, payload.year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/generate-current-month", response_model=GenerateMonthlyResponse)
async def generate_current_month_payments(
    db: AsyncSession = Depends(get_db),
) -> GenerateMonthlyResponse:
    today = date.today()
    return await service.generate_monthly_payments(db, today.month, today.year)


@router.get("/{payment_id}", response_model=PaymentRecordResponse)
async def get_payment_record(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordResponse:
    result = await service.get_payment_record(db, payment_id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment record not found",
        )
    return result


@router.post("/{payment_id}/mark-paid", response_model=PaymentOutcome)
async def mark_paid(
    payment_id: UUID,
    payload: Optional[MarkPaidRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> PaymentOutcome:
    try:
        return await service.mark_paid(db, payment_id, payload or MarkPaidRequest())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/{payment_id}/unmark", response_model=PaymentOutcome)
async def unmark(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PaymentOutcome:
    try:
        return await service.unmark(db, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/{payment_id}/partial", response_model=PaymentOutcome)
async def apply_partial_payment(
    payment_id: UUID,
    payload: PartialPaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentOutcome:
    try:
        return await service.apply_partial_payment(db, payment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/{payment_id}/invoice-sent", response_model=PaymentRecordResponse)
async def mark_invoice_sent(
    payment_id: UUID,
    payload: Optional[InvoiceSentRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> PaymentRecordResponse:
    try:
        return await service.mark_invoice_sent(db, payment_id, payload or InvoiceSentRequest())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

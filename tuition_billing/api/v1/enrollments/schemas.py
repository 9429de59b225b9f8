"""Enrollment and fee adjustment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tuition_billing.api.v1.payments.schemas import PaymentRecordResponse
from tuition_billing.core.enums import CascadeItemStatus, CascadeJobStatus, EnrollmentStatus


class EnrollmentCreate(BaseModel):
    student_sid: str
    class_id: str
    enrollment_date: Optional[date] = Field(None, description="First billed day; defaults to today")
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    end_date: Optional[date] = Field(None, description="Only for WITHDRAWN or COMPLETED; defaults to today")
    adjusted_fee: Optional[Decimal] = Field(None, description="Per-enrollment override of the class fee")
    notes: Optional[str] = None
    bill_first_month: bool = True


class EnrollmentResponse(BaseModel):
    id: UUID
    student_sid: str
    class_id: str
    status: EnrollmentStatus
    enrollment_date: date
    end_date: Optional[date] = None
    adjusted_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnrollmentCreateResponse(BaseModel):
    enrollment: EnrollmentResponse
    first_payment: Optional[PaymentRecordResponse] = None


class EnrollmentStatusUpdate(BaseModel):
    status: EnrollmentStatus
    end_date: Optional[date] = None


class AdjustFeeRequest(BaseModel):
    adjusted_fee: Decimal


class CascadeWarning(BaseModel):
    """A payment record the fee cascade could not update. The fee change itself stands."""

    payment_record_id: UUID
    message: str


class FeeCascadeItemResponse(BaseModel):
    id: UUID
    payment_record_id: UUID
    status: CascadeItemStatus
    old_amount: Optional[Decimal] = None
    new_amount: Optional[Decimal] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class FeeCascadeJobResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    new_fee: Decimal
    status: CascadeJobStatus
    total_items: int
    failed_items: int
    attempts: int
    created_at: datetime
    finished_at: Optional[datetime] = None
    items: List[FeeCascadeItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class FeeAdjustmentResponse(BaseModel):
    enrollment: EnrollmentResponse
    cascade: FeeCascadeJobResponse
    warnings: List[CascadeWarning] = Field(default_factory=list)

"""Payment record schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tuition_billing.core.enums import PaymentEntryKind, PaymentMethod, PaymentStatus


class PaymentRecordCreate(BaseModel):
    student_sid: str
    class_id: str
    # Month and year are range-checked by the service so direct callers get the same errors.
    academic_year: int
    month: int
    fee_override: Optional[Decimal] = Field(None, description="Used only when neither enrollment nor class carries a fee")


class PaymentEntryResponse(BaseModel):
    id: UUID
    kind: PaymentEntryKind
    amount: Decimal
    payment_method: Optional[PaymentMethod] = None
    recorded_at: datetime

    class Config:
        from_attributes = True


class PaymentRecordResponse(BaseModel):
    id: UUID
    student_sid: str
    class_id: str
    academic_year: int
    month: int
    enrollment_id: Optional[UUID] = None
    enrollment_date: date
    base_fee: Decimal
    amount: Decimal
    amount_paid: Decimal
    remaining_balance: Decimal
    status: PaymentStatus
    effective_status: PaymentStatus
    is_overdue: bool
    due_date: date
    payment_method: PaymentMethod
    paid_date: Optional[datetime] = None
    receipt_number: Optional[str] = None
    invoice_sent: bool = False
    invoice_sent_date: Optional[datetime] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None
    entries: List[PaymentEntryResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PaymentOutcome(BaseModel):
    """Result of a payment action. settled=True when this call moved the record to PAID."""

    payment: PaymentRecordResponse
    settled: bool = False


class MarkPaidRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    paid_date: Optional[datetime] = None
    receipt_number: Optional[str] = Field(None, max_length=100)


class PartialPaymentRequest(BaseModel):
    amount: Decimal
    payment_method: Optional[PaymentMethod] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class PaymentRecordListResponse(BaseModel):
    items: List[PaymentRecordResponse]
    pagination: Pagination


class GenerateMonthlyRequest(BaseModel):
    month: int
    year: int


class GenerateMonthlyResponse(BaseModel):
    month: int
    year: int
    already_generated: bool
    new_count: int
    skip_count: int
    message: str


class InvoiceSentRequest(BaseModel):
    invoice_number: Optional[str] = Field(None, max_length=100)
    sent_date: Optional[datetime] = None

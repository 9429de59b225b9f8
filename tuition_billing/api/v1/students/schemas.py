"""Student schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from tuition_billing.core.enums import PaymentMethod


class StudentCreate(BaseModel):
    sid: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    contact_number: Optional[str] = Field(None, max_length=30)
    payment_method: PaymentMethod = PaymentMethod.CASH


class StudentResponse(BaseModel):
    sid: str
    name: str
    email: str
    contact_number: Optional[str] = None
    payment_method: PaymentMethod
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StudentDeleteResponse(BaseModel):
    sid: str
    removed_payment_records: int
    removed_enrollments: int

"""Class schemas."""

from datetime import datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ClassCreate(BaseModel):
    class_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    center_id: Optional[int] = None
    monthly_fee: Optional[Decimal] = Field(None, gt=0, description="NULL means the fee is supplied per charge")
    schedule_days: List[str] = Field(default_factory=list, description="Weekday names, e.g. MONDAY")
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class ClassResponse(BaseModel):
    class_id: str
    name: str
    center_id: Optional[int] = None
    monthly_fee: Optional[Decimal] = None
    schedule_days: List[str]
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

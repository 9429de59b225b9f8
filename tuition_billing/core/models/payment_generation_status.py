import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint, Uuid

from tuition_billing.db.session import Base


class PaymentGenerationStatus(Base):
    """Tracks the monthly batch run per (year, month). is_complete=False marks an interrupted run."""

    __tablename__ = "payment_generation_status"
    __table_args__ = (UniqueConstraint("year", "month", name="uq_payment_generation_month"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    generated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    generated_by = Column(String(50), nullable=False, default="system")
    count = Column(Integer, nullable=False, default=0)
    is_complete = Column(Boolean, nullable=False, default=False)

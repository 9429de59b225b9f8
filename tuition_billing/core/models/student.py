"""Student directory entry. sid is the stable business identifier used in billing tuples."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String

from tuition_billing.core.enums import PaymentMethod
from tuition_billing.db.session import Base


class Student(Base):
    __tablename__ = "students"

    sid = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    contact_number = Column(String(30), nullable=True)
    # Default channel copied onto each new payment record.
    payment_method = Column(String(20), nullable=False, default=PaymentMethod.CASH.value)  # CASH | INVOICE
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

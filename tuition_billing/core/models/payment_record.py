"""Payment record: one month's charge for a (student, class, academic year, month) billing tuple."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from tuition_billing.core.enums import PaymentStatus
from tuition_billing.db.session import Base


class PaymentRecord(Base):
    """
    Billing ledger entry. amount_paid is the running total of the entries sub-ledger.
    OVERDUE is derived from due_date on read and never stored.
    """

    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("student_sid", "class_id", "academic_year", "month", name="uq_payment_record_tuple"),
        CheckConstraint("month BETWEEN 1 AND 12", name="chk_payment_record_month"),
        CheckConstraint("status IN ('PENDING','PAID','WAIVED')", name="chk_payment_record_status"),
        CheckConstraint("amount_paid <= amount", name="chk_payment_record_no_overpay"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_sid = Column(String(50), ForeignKey("students.sid", ondelete="RESTRICT"), nullable=False, index=True)
    class_id = Column(String(50), ForeignKey("classes.class_id", ondelete="RESTRICT"), nullable=False, index=True)
    academic_year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    # Snapshot of the enrollment the charge was prorated from; the fee cascade reuses it.
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True)
    enrollment_date = Column(Date, nullable=False)
    base_fee = Column(Numeric(12, 2), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    due_date = Column(Date, nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)  # CASH | INVOICE
    paid_date = Column(DateTime(timezone=True), nullable=True)
    receipt_number = Column(String(100), nullable=True)
    invoice_sent = Column(Boolean, nullable=False, default=False)
    invoice_sent_date = Column(DateTime(timezone=True), nullable=True)
    invoice_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student")
    school_class = relationship("SchoolClass")
    entries = relationship(
        "PaymentEntry",
        back_populates="payment_record",
        order_by="PaymentEntry.recorded_at",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

"""Append-only sub-ledger of money movements against a payment record."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from tuition_billing.db.session import Base


class PaymentEntry(Base):
    """INCREMENT (partial payment), SETTLEMENT (mark paid) or REVERSAL (unmark, negative amount)."""

    __tablename__ = "payment_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_record_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("payment_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    payment_record = relationship("PaymentRecord", back_populates="entries")

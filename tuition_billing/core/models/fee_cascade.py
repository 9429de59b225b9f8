"""Fee cascade job: per-record recomputation after an enrollment fee change."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from tuition_billing.core.enums import CascadeItemStatus, CascadeJobStatus
from tuition_billing.db.session import Base


class FeeCascadeJob(Base):
    __tablename__ = "fee_cascade_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    new_fee = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=CascadeJobStatus.RUNNING.value)
    total_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "FeeCascadeItem",
        back_populates="job",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class FeeCascadeItem(Base):
    """Completion status of one payment record within a cascade job."""

    __tablename__ = "fee_cascade_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("fee_cascade_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_record_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("payment_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = Column(String(20), nullable=False, default=CascadeItemStatus.PENDING.value)
    old_amount = Column(Numeric(12, 2), nullable=True)
    new_amount = Column(Numeric(12, 2), nullable=True)
    error = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    job = relationship("FeeCascadeJob", back_populates="items")

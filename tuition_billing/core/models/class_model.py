"""Scheduled class at a center. Model named SchoolClass to avoid Python 'class' keyword."""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Time

from tuition_billing.db.session import Base


class SchoolClass(Base):
    """
    Class with a base monthly fee and a weekly schedule.
    monthly_fee has no history: changing it affects only charges computed afterwards.
    """

    __tablename__ = "classes"

    class_id = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False)
    center_id = Column(Integer, nullable=True)
    monthly_fee = Column(Numeric(12, 2), nullable=True)
    schedule_days = Column(JSON, nullable=False, default=list)  # e.g. ["MONDAY", "THURSDAY"]
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

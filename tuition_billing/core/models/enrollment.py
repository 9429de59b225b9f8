import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import relationship

from tuition_billing.core.enums import EnrollmentStatus
from tuition_billing.db.session import Base


class Enrollment(Base):
    """
    Links one student to one class. At most one ACTIVE row per (student_sid, class_id),
    enforced by a partial unique index. adjusted_fee NULL means "use the class fee".
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        Index(
            "uq_enrollments_active_pair",
            "student_sid",
            "class_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_sid = Column(String(50), ForeignKey("students.sid", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(String(50), ForeignKey("classes.class_id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)
    enrollment_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    adjusted_fee = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student", backref="enrollments")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])

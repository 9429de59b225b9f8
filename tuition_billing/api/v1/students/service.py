from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.core.enums import PaymentStatus
from tuition_billing.core.exceptions import ConflictError, NotFoundError
from tuition_billing.core.logging import get_logger
from tuition_billing.core.models import (
    Enrollment,
    FeeCascadeItem,
    FeeCascadeJob,
    PaymentEntry,
    PaymentRecord,
    Student,
)

from .schemas import StudentCreate, StudentDeleteResponse, StudentResponse

logger = get_logger(__name__)


async def register_student(db: AsyncSession, payload: StudentCreate) -> StudentResponse:
    student = Student(
        sid=payload.sid.strip(),
        name=payload.name.strip(),
        email=str(payload.email).lower(),
        contact_number=(payload.contact_number or "").strip() or None,
        payment_method=payload.payment_method.value,
    )
    db.add(student)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await db.get(Student, payload.sid.strip())
        raise ConflictError(
            "Student with this sid or email already exists",
            StudentResponse.model_validate(existing) if existing else None,
        )
    await db.refresh(student)
    return StudentResponse.model_validate(student)


async def get_student(db: AsyncSession, sid: str) -> Optional[Student]:
    return await db.get(Student, sid)


async def get_student_or_404(db: AsyncSession, sid: str) -> Student:
    student = await get_student(db, sid)
    if not student:
        raise NotFoundError(f"Student '{sid}' not found")
    return student


async def delete_student(db: AsyncSession, sid: str) -> StudentDeleteResponse:
    """
    Remove a student with their unpaid charges and enrollments.
    Refused while any record holds money: PAID, or PENDING with partial payments.
    """
    await get_student_or_404(db, sid)
    retained = (
        await db.execute(
            select(func.count(PaymentRecord.id)).where(
                PaymentRecord.student_sid == sid,
                or_(
                    PaymentRecord.status == PaymentStatus.PAID.value,
                    PaymentRecord.amount_paid > 0,
                ),
            )
        )
    ).scalar() or 0
    if retained:
        raise ConflictError(
            f"Student '{sid}' has {retained} payment record(s) with money received and cannot be removed"
        )

    record_filter = (
        PaymentRecord.student_sid == sid,
        PaymentRecord.status.in_([PaymentStatus.PENDING.value, PaymentStatus.WAIVED.value]),
    )
    record_count = (
        await db.execute(select(func.count(PaymentRecord.id)).where(*record_filter))
    ).scalar() or 0
    enrollment_count = (
        await db.execute(select(func.count(Enrollment.id)).where(Enrollment.student_sid == sid))
    ).scalar() or 0

    removable = select(PaymentRecord.id).where(*record_filter)
    await db.execute(delete(FeeCascadeItem).where(FeeCascadeItem.payment_record_id.in_(removable)))
    await db.execute(delete(PaymentEntry).where(PaymentEntry.payment_record_id.in_(removable)))
    await db.execute(delete(PaymentRecord).where(*record_filter))
    enrollment_ids = select(Enrollment.id).where(Enrollment.student_sid == sid)
    await db.execute(delete(FeeCascadeJob).where(FeeCascadeJob.enrollment_id.in_(enrollment_ids)))
    await db.execute(delete(Enrollment).where(Enrollment.student_sid == sid))
    await db.execute(delete(Student).where(Student.sid == sid))
    await db.commit()
    logger.info(
        "student.deleted",
        sid=sid,
        removed_payment_records=record_count,
        removed_enrollments=enrollment_count,
    )
    return StudentDeleteResponse(
        sid=sid,
        removed_payment_records=record_count,
        removed_enrollments=enrollment_count,
    )

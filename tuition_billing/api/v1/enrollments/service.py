"""Enrollments service: enrollment lifecycle and the fee adjustment cascade over payment records."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tuition_billing.api.v1.classes.service import get_class_or_404
from tuition_billing.api.v1.payments import service as payments_service
from tuition_billing.api.v1.payments.audit_service import log_fee_audit
from tuition_billing.api.v1.payments.schemas import PaymentRecordCreate, PaymentRecordResponse
from tuition_billing.api.v1.students.service import get_student_or_404
from tuition_billing.billing.proration import quantize_money
from tuition_billing.core.enums import (
    CascadeItemStatus,
    CascadeJobStatus,
    EnrollmentStatus,
    PaymentStatus,
)
from tuition_billing.core.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from tuition_billing.core.logging import get_logger
from tuition_billing.core.models import Enrollment, FeeCascadeItem, FeeCascadeJob, PaymentRecord

from .schemas import (
    CascadeWarning,
    EnrollmentCreate,
    EnrollmentCreateResponse,
    EnrollmentResponse,
    EnrollmentStatusUpdate,
    FeeAdjustmentResponse,
    FeeCascadeJobResponse,
)

logger = get_logger(__name__)

ENDING_STATUSES = (EnrollmentStatus.WITHDRAWN, EnrollmentStatus.COMPLETED)


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _validate_fee(fee: Decimal) -> Decimal:
    fee = _to_decimal(fee)
    if fee < 0:
        raise ValidationError("Adjusted fee cannot be negative")
    if fee != quantize_money(fee):
        raise ValidationError("Adjusted fee cannot have more than two decimal places")
    return fee


def _end_date_for(
    status: EnrollmentStatus,
    enrollment_date: date,
    end_date: Optional[date] = None,
) -> Optional[date]:
    """Ending statuses carry an end_date (today by default) that cannot precede enrollment_date."""
    if status not in ENDING_STATUSES:
        return None
    end_date = end_date or date.today()
    if end_date < enrollment_date:
        raise ValidationError("end_date cannot be before enrollment_date")
    return end_date


async def _active_enrollment(db: AsyncSession, student_sid: str, class_id: str) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.student_sid == student_sid,
            Enrollment.class_id == class_id,
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none()


async def create_enrollment(
    db: AsyncSession,
    payload: EnrollmentCreate,
    changed_by: Optional[str] = None,
) -> EnrollmentCreateResponse:
    """
    Enroll a student in a class and bill the first month. A second ACTIVE enrollment for the
    same pair is rejected by the partial unique index and reported with the existing row.
    """
    await get_student_or_404(db, payload.student_sid)
    await get_class_or_404(db, payload.class_id)
    adjusted_fee = _validate_fee(payload.adjusted_fee) if payload.adjusted_fee is not None else None
    enrollment_date = payload.enrollment_date or date.today()
    end_date = _end_date_for(payload.status, enrollment_date, payload.end_date)

    enrollment = Enrollment(
        student_sid=payload.student_sid,
        class_id=payload.class_id,
        status=payload.status.value,
        enrollment_date=enrollment_date,
        end_date=end_date,
        adjusted_fee=adjusted_fee,
        notes=(payload.notes or "").strip() or None,
    )
    db.add(enrollment)
    try:
        await db.flush()
        await log_fee_audit(
            db, "enrollments", enrollment.id,
            "CREATE", None,
            {
                "student_sid": payload.student_sid,
                "class_id": payload.class_id,
                "enrollment_date": enrollment.enrollment_date.isoformat(),
                "adjusted_fee": str(adjusted_fee) if adjusted_fee is not None else None,
            },
            changed_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _active_enrollment(db, payload.student_sid, payload.class_id)
        raise ConflictError(
            "Student is already enrolled in this class",
            EnrollmentResponse.model_validate(existing) if existing else None,
        )
    await db.refresh(enrollment)
    logger.info(
        "enrollment.created",
        enrollment_id=str(enrollment.id),
        student_sid=enrollment.student_sid,
        class_id=enrollment.class_id,
        enrollment_date=enrollment.enrollment_date.isoformat(),
    )

    first_payment: Optional[PaymentRecordResponse] = None
    if payload.bill_first_month and enrollment.status == EnrollmentStatus.ACTIVE.value:
        start = enrollment.enrollment_date
        try:
            first_payment = await payments_service.create_payment_record(
                db,
                PaymentRecordCreate(
                    student_sid=enrollment.student_sid,
                    class_id=enrollment.class_id,
                    academic_year=start.year,
                    month=start.month,
                ),
                enrollment_id=enrollment.id,
                changed_by=changed_by,
            )
        except ConflictError as e:
            # Re-enrollment in the same month reuses the existing billing tuple.
            first_payment = e.existing
        except ValidationError as e:
            logger.warning(
                "enrollment.first_month_not_billed",
                enrollment_id=str(enrollment.id),
                reason=e.message,
            )
        await db.refresh(enrollment)

    return EnrollmentCreateResponse(
        enrollment=EnrollmentResponse.model_validate(enrollment),
        first_payment=first_payment,
    )


async def get_enrollment(db: AsyncSession, student_sid: str, class_id: str) -> Optional[EnrollmentResponse]:
    """The enrollment billing uses for the pair: the ACTIVE one, else the most recent."""
    enrollment = await payments_service.find_owning_enrollment(db, student_sid, class_id)
    return EnrollmentResponse.model_validate(enrollment) if enrollment else None


async def get_enrollment_by_id(db: AsyncSession, enrollment_id: UUID) -> Optional[EnrollmentResponse]:
    enrollment = await db.get(Enrollment, enrollment_id)
    return EnrollmentResponse.model_validate(enrollment) if enrollment else None


async def list_enrollments(
    db: AsyncSession,
    student_sid: Optional[str] = None,
    class_id: Optional[str] = None,
    status_filter: Optional[EnrollmentStatus] = None,
) -> List[EnrollmentResponse]:
    stmt = select(Enrollment)
    if student_sid:
        stmt = stmt.where(Enrollment.student_sid == student_sid)
    if class_id:
        stmt = stmt.where(Enrollment.class_id == class_id)
    if status_filter is not None:
        stmt = stmt.where(Enrollment.status == status_filter.value)
    stmt = stmt.order_by(Enrollment.updated_at.desc())
    result = await db.execute(stmt)
    return [EnrollmentResponse.model_validate(e) for e in result.scalars().all()]


async def update_enrollment_status(
    db: AsyncSession,
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
    changed_by: Optional[str] = None,
) -> EnrollmentResponse:
    """Ending an enrollment stamps end_date (today by default); reactivation obeys the ACTIVE uniqueness."""
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    end_date = enrollment.end_date
    if payload.status in ENDING_STATUSES or payload.status == EnrollmentStatus.ACTIVE:
        end_date = _end_date_for(payload.status, enrollment.enrollment_date, payload.end_date)
    old_status = enrollment.status
    enrollment.status = payload.status.value
    enrollment.end_date = end_date
    await log_fee_audit(
        db, "enrollments", enrollment.id,
        "STATUS_CHANGE",
        {"status": old_status},
        {"status": enrollment.status, "end_date": enrollment.end_date.isoformat() if enrollment.end_date else None},
        changed_by,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student already has an ACTIVE enrollment in this class")
    await db.refresh(enrollment)
    return EnrollmentResponse.model_validate(enrollment)


# --- Fee adjustment cascade ---
async def _load_job(db: AsyncSession, job_id: UUID) -> Optional[FeeCascadeJob]:
    result = await db.execute(
        select(FeeCascadeJob)
        .options(selectinload(FeeCascadeJob.items))
        .where(FeeCascadeJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _reprice_record(
    db: AsyncSession,
    item_id: UUID,
    record_id: UUID,
    fee: Decimal,
) -> Tuple[Decimal, Decimal]:
    """
    Recompute one record from the new fee and the record's own enrollment date and month.
    Status follows the amount: zero is waived, fully covered is paid, anything else is pending.
    Re-running it yields the same result.
    """
    record = await db.get(PaymentRecord, record_id, with_for_update=True, populate_existing=True)
    if not record:
        raise NotFoundError("Payment record no longer exists")
    old_amount = _to_decimal(record.amount)
    new_amount = payments_service.charge_for(fee, record.enrollment_date, record.month, record.academic_year)
    paid = _to_decimal(record.amount_paid)
    if paid > new_amount:
        raise ValidationError(
            f"Amount already paid ({paid}) exceeds the recomputed charge ({new_amount})"
        )

    old_status = record.status
    record.amount = new_amount
    record.base_fee = fee
    if new_amount == 0:
        record.status = PaymentStatus.WAIVED.value
        record.paid_date = None
    elif paid == new_amount:
        record.status = PaymentStatus.PAID.value
        record.paid_date = record.paid_date or datetime.now(timezone.utc)
    else:
        record.status = PaymentStatus.PENDING.value
        record.paid_date = None
    payments_service.append_note(record, f"adjusted to {new_amount} based on enrollment fee change")

    item = await db.get(FeeCascadeItem, item_id)
    item.status = CascadeItemStatus.DONE.value
    item.old_amount = old_amount
    item.new_amount = new_amount
    item.error = None
    await log_fee_audit(
        db, "payment_records", record.id,
        "CASCADE",
        {"amount": str(old_amount), "status": old_status},
        {"amount": str(new_amount), "status": record.status, "base_fee": str(fee)},
    )
    return old_amount, new_amount


async def _run_cascade(db: AsyncSession, job_id: UUID) -> List[CascadeWarning]:
    """Process every unfinished item of a job, each in its own transaction."""
    job = await _load_job(db, job_id)
    enrollment = await db.get(Enrollment, job.enrollment_id)
    fee = _to_decimal(enrollment.adjusted_fee) if enrollment.adjusted_fee is not None else _to_decimal(job.new_fee)
    pending = [
        (item.id, item.payment_record_id)
        for item in job.items
        if item.status != CascadeItemStatus.DONE.value
    ]

    warnings: List[CascadeWarning] = []
    for item_id, record_id in pending:
        try:
            await _reprice_record(db, item_id, record_id, fee)
            await db.commit()
        except (ServiceError, SQLAlchemyError) as e:
            await db.rollback()
            message = e.message if isinstance(e, ServiceError) else str(e)
            item = await db.get(FeeCascadeItem, item_id)
            item.status = CascadeItemStatus.FAILED.value
            item.error = message
            await db.commit()
            logger.warning(
                "fee_cascade.item_failed",
                job_id=str(job_id),
                payment_record_id=str(record_id),
                error=message,
            )
            warnings.append(CascadeWarning(payment_record_id=record_id, message=message))

    failed = (
        await db.execute(
            select(func.count(FeeCascadeItem.id)).where(
                FeeCascadeItem.job_id == job_id,
                FeeCascadeItem.status == CascadeItemStatus.FAILED.value,
            )
        )
    ).scalar() or 0
    job = await _load_job(db, job_id)
    job.failed_items = failed
    job.status = (CascadeJobStatus.PARTIAL if failed else CascadeJobStatus.COMPLETED).value
    job.finished_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info(
        "fee_cascade.finished",
        job_id=str(job_id),
        status=job.status,
        total_items=job.total_items,
        failed_items=failed,
    )
    return warnings


async def set_adjusted_fee(
    db: AsyncSession,
    enrollment_id: UUID,
    new_fee: Decimal,
    changed_by: Optional[str] = None,
) -> FeeAdjustmentResponse:
    """
    Persist a per-enrollment fee, then re-price every payment record of the student/class pair
    across all months. The fee change commits first and is never rolled back; records the
    cascade cannot update come back as warnings and stay retriable through the job.
    """
    fee = _validate_fee(new_fee)
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found")

    old_fee = enrollment.adjusted_fee
    enrollment.adjusted_fee = fee
    await log_fee_audit(
        db, "enrollments", enrollment.id,
        "FEE_ADJUST",
        {"adjusted_fee": str(old_fee) if old_fee is not None else None},
        {"adjusted_fee": str(fee)},
        changed_by,
    )

    record_ids = (
        await db.execute(
            select(PaymentRecord.id)
            .where(
                PaymentRecord.student_sid == enrollment.student_sid,
                PaymentRecord.class_id == enrollment.class_id,
            )
            .order_by(PaymentRecord.academic_year, PaymentRecord.month)
        )
    ).scalars().all()
    job = FeeCascadeJob(
        enrollment_id=enrollment.id,
        new_fee=fee,
        status=CascadeJobStatus.RUNNING.value,
        total_items=len(record_ids),
        failed_items=0,
        attempts=1,
    )
    db.add(job)
    await db.flush()
    for record_id in record_ids:
        db.add(FeeCascadeItem(job_id=job.id, payment_record_id=record_id, status=CascadeItemStatus.PENDING.value))
    job_id = job.id
    await db.commit()
    logger.info(
        "enrollment.fee_adjusted",
        enrollment_id=str(enrollment_id),
        adjusted_fee=str(fee),
        job_id=str(job_id),
        records=len(record_ids),
    )

    warnings = await _run_cascade(db, job_id)
    enrollment = await db.get(Enrollment, enrollment_id)
    await db.refresh(enrollment)
    return FeeAdjustmentResponse(
        enrollment=EnrollmentResponse.model_validate(enrollment),
        cascade=FeeCascadeJobResponse.model_validate(await _load_job(db, job_id)),
        warnings=warnings,
    )


async def retry_fee_cascade(db: AsyncSession, job_id: UUID) -> FeeAdjustmentResponse:
    """Re-run the unfinished items of a cascade with the enrollment's current fee."""
    job = await _load_job(db, job_id)
    if not job:
        raise NotFoundError("Fee cascade job not found")
    job.attempts = (job.attempts or 1) + 1
    job.status = CascadeJobStatus.RUNNING.value
    enrollment_id = job.enrollment_id
    await db.commit()

    warnings = await _run_cascade(db, job_id)
    enrollment = await db.get(Enrollment, enrollment_id)
    await db.refresh(enrollment)
    return FeeAdjustmentResponse(
        enrollment=EnrollmentResponse.model_validate(enrollment),
        cascade=FeeCascadeJobResponse.model_validate(await _load_job(db, job_id)),
        warnings=warnings,
    )


async def get_fee_cascade(db: AsyncSession, job_id: UUID) -> Optional[FeeCascadeJobResponse]:
    job = await _load_job(db, job_id)
    return FeeCascadeJobResponse.model_validate(job) if job else None

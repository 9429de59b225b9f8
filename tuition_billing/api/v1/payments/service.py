"""Payments service: monthly charges, payment lifecycle, partial payments. Financial logic with audit."""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, NoReturn, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tuition_billing.billing.proration import (
    compute_charge,
    due_date_for,
    month_bounds,
    quantize_money,
    validate_period,
)
from tuition_billing.core.config import settings
from tuition_billing.core.enums import (
    EnrollmentStatus,
    PaymentEntryKind,
    PaymentMethod,
    PaymentStatus,
)
from tuition_billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from tuition_billing.core.logging import get_logger
from tuition_billing.core.models import (
    Enrollment,
    PaymentEntry,
    PaymentGenerationStatus,
    PaymentRecord,
    SchoolClass,
    Student,
)

from .audit_service import log_fee_audit
from .schemas import (
    GenerateMonthlyResponse,
    InvoiceSentRequest,
    MarkPaidRequest,
    Pagination,
    PartialPaymentRequest,
    PaymentEntryResponse,
    PaymentOutcome,
    PaymentRecordCreate,
    PaymentRecordListResponse,
    PaymentRecordResponse,
)

logger = get_logger(__name__)

ZERO = Decimal("0.00")


def _to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def append_note(record: PaymentRecord, note: str) -> None:
    record.notes = f"{record.notes}\n{note}" if record.notes else note


def is_overdue(record: PaymentRecord, today: Optional[date] = None) -> bool:
    """OVERDUE is observed, not stored: a PENDING record past its due date."""
    today = today or date.today()
    return record.status == PaymentStatus.PENDING.value and record.due_date < today


def _to_response(record: PaymentRecord, today: Optional[date] = None) -> PaymentRecordResponse:
    amount = _to_decimal(record.amount)
    amount_paid = _to_decimal(record.amount_paid)
    overdue = is_overdue(record, today)
    return PaymentRecordResponse(
        id=record.id,
        student_sid=record.student_sid,
        class_id=record.class_id,
        academic_year=record.academic_year,
        month=record.month,
        enrollment_id=record.enrollment_id,
        enrollment_date=record.enrollment_date,
        base_fee=_to_decimal(record.base_fee),
        amount=amount,
        amount_paid=amount_paid,
        remaining_balance=max(ZERO, amount - amount_paid),
        status=record.status,
        effective_status=PaymentStatus.OVERDUE if overdue else record.status,
        is_overdue=overdue,
        due_date=record.due_date,
        payment_method=record.payment_method,
        paid_date=record.paid_date,
        receipt_number=record.receipt_number,
        invoice_sent=bool(record.invoice_sent),
        invoice_sent_date=record.invoice_sent_date,
        invoice_number=record.invoice_number,
        notes=record.notes,
        entries=[PaymentEntryResponse.model_validate(e) for e in record.entries],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def _load_record(db: AsyncSession, payment_id: UUID, for_update: bool = False) -> Optional[PaymentRecord]:
    stmt = (
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.entries))
        .where(PaymentRecord.id == payment_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        # Row lock on PostgreSQL; SQLite serializes writers instead.
        stmt = stmt.with_for_update(of=PaymentRecord)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _load_record_or_404(db: AsyncSession, payment_id: UUID, for_update: bool = False) -> PaymentRecord:
    record = await _load_record(db, payment_id, for_update)
    if not record:
        raise NotFoundError("Payment record not found")
    return record


async def _find_by_tuple(
    db: AsyncSession,
    student_sid: str,
    class_id: str,
    academic_year: int,
    month: int,
) -> Optional[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.entries))
        .where(
            PaymentRecord.student_sid == student_sid,
            PaymentRecord.class_id == class_id,
            PaymentRecord.academic_year == academic_year,
            PaymentRecord.month == month,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_owning_enrollment(db: AsyncSession, student_sid: str, class_id: str) -> Optional[Enrollment]:
    """The ACTIVE enrollment for the pair, else the most recent one."""
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.student_sid == student_sid, Enrollment.class_id == class_id)
        .order_by(
            case((Enrollment.status == EnrollmentStatus.ACTIVE.value, 0), else_=1),
            Enrollment.enrollment_date.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


def resolve_effective_fee(
    enrollment: Enrollment,
    school_class: SchoolClass,
    fee_override: Optional[Decimal] = None,
) -> Decimal:
    """adjusted_fee, else the class monthly fee, else an explicit caller override."""
    if enrollment.adjusted_fee is not None:
        return _to_decimal(enrollment.adjusted_fee)
    if school_class.monthly_fee is not None:
        return _to_decimal(school_class.monthly_fee)
    if fee_override is not None:
        return _to_decimal(fee_override)
    raise ValidationError(f"No fee available for class '{school_class.class_id}'")


def charge_for(fee: Decimal, enrollment_date: date, month: int, year: int) -> Decimal:
    """Prorated charge for one month; a zero fee yields a zero charge."""
    if fee < 0:
        raise ValidationError("Fee cannot be negative")
    if fee == 0:
        month_bounds(month, year)
        return ZERO
    return compute_charge(fee, enrollment_date, month, year, settings.proration_mode)


async def _insert_payment_record(
    db: AsyncSession,
    student_sid: str,
    class_id: str,
    academic_year: int,
    month: int,
    fee_override: Optional[Decimal] = None,
    enrollment_id: Optional[UUID] = None,
    changed_by: Optional[str] = None,
) -> UUID:
    """Build, insert and commit one record. IntegrityError propagates on a duplicate tuple."""
    month_bounds(month, academic_year)
    student = await db.get(Student, student_sid)
    if not student:
        raise NotFoundError(f"Student '{student_sid}' not found")
    school_class = await db.get(SchoolClass, class_id)
    if not school_class:
        raise NotFoundError(f"Class '{class_id}' not found")
    if enrollment_id is not None:
        enrollment = await db.get(Enrollment, enrollment_id)
    else:
        enrollment = await find_owning_enrollment(db, student_sid, class_id)
    if not enrollment:
        raise NotFoundError(f"No enrollment for student '{student_sid}' in class '{class_id}'")

    fee = resolve_effective_fee(enrollment, school_class, fee_override)
    amount = charge_for(fee, enrollment.enrollment_date, month, academic_year)
    record_status = PaymentStatus.WAIVED if amount == 0 else PaymentStatus.PENDING
    record = PaymentRecord(
        student_sid=student_sid,
        class_id=class_id,
        academic_year=academic_year,
        month=month,
        enrollment_id=enrollment.id,
        enrollment_date=enrollment.enrollment_date,
        base_fee=fee,
        amount=amount,
        amount_paid=ZERO,
        status=record_status.value,
        due_date=due_date_for(month, academic_year, settings.payment_due_day),
        payment_method=student.payment_method or PaymentMethod.CASH.value,
    )
    db.add(record)
    await db.flush()
    await log_fee_audit(
        db, "payment_records", record.id,
        "CREATE", None,
        {
            "student_sid": student_sid,
            "class_id": class_id,
            "academic_year": academic_year,
            "month": month,
            "base_fee": str(fee),
            "amount": str(amount),
            "status": record_status.value,
        },
        changed_by,
    )
    record_id = record.id
    await db.commit()
    logger.info(
        "payment_record.created",
        payment_id=str(record_id),
        student_sid=student_sid,
        class_id=class_id,
        academic_year=academic_year,
        month=month,
        amount=str(amount),
        status=record_status.value,
    )
    return record_id


async def create_payment_record(
    db: AsyncSession,
    payload: PaymentRecordCreate,
    enrollment_id: Optional[UUID] = None,
    changed_by: Optional[str] = None,
) -> PaymentRecordResponse:
    """
    Create the charge for one billing tuple. A duplicate tuple raises ConflictError
    carrying the existing record; uniqueness is enforced by the store constraint.
    """
    try:
        record_id = await _insert_payment_record(
            db,
            payload.student_sid,
            payload.class_id,
            payload.academic_year,
            payload.month,
            fee_override=payload.fee_override,
            enrollment_id=enrollment_id,
            changed_by=changed_by,
        )
    except IntegrityError:
        await db.rollback()
        existing = await _find_by_tuple(
            db, payload.student_sid, payload.class_id, payload.academic_year, payload.month
        )
        raise ConflictError(
            "Payment record already exists for this student, class, month and year",
            _to_response(existing) if existing else None,
        )
    return _to_response(await _load_record_or_404(db, record_id))


async def get_payment_record(db: AsyncSession, payment_id: UUID) -> Optional[PaymentRecordResponse]:
    record = await _load_record(db, payment_id)
    return _to_response(record) if record else None


async def list_payment_records(
    db: AsyncSession,
    student_sid: Optional[str] = None,
    class_id: Optional[str] = None,
    status_filter: Optional[PaymentStatus] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    overdue: Optional[bool] = None,
    invoice_sent: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
) -> PaymentRecordListResponse:
    validate_period(month, year)
    today = date.today()
    conditions = []
    if student_sid:
        conditions.append(PaymentRecord.student_sid == student_sid)
    if class_id:
        conditions.append(PaymentRecord.class_id == class_id)
    if month is not None:
        conditions.append(PaymentRecord.month == month)
    if year is not None:
        conditions.append(PaymentRecord.academic_year == year)
    if invoice_sent is not None:
        conditions.append(PaymentRecord.invoice_sent == invoice_sent)
    if status_filter == PaymentStatus.OVERDUE:
        overdue = True
    elif status_filter is not None:
        conditions.append(PaymentRecord.status == status_filter.value)
    if overdue is True:
        conditions.append(PaymentRecord.status == PaymentStatus.PENDING.value)
        conditions.append(PaymentRecord.due_date < today)
    elif overdue is False:
        conditions.append(
            (PaymentRecord.status != PaymentStatus.PENDING.value) | (PaymentRecord.due_date >= today)
        )

    total = (
        await db.execute(select(func.count(PaymentRecord.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.entries))
        .where(*conditions)
        .order_by(PaymentRecord.due_date, PaymentRecord.student_sid, PaymentRecord.class_id)
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    items = [_to_response(r, today) for r in result.scalars().all()]
    return PaymentRecordListResponse(
        items=items,
        pagination=Pagination(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0),
    )


async def _reject(db: AsyncSession, message: str, payload: Optional[dict] = None) -> NoReturn:
    """Release the row lock taken by the load before reporting a refused transition."""
    await db.rollback()
    raise ValidationError(message, payload)


async def mark_paid(
    db: AsyncSession,
    payment_id: UUID,
    payload: MarkPaidRequest,
    changed_by: Optional[str] = None,
) -> PaymentOutcome:
    """PENDING (including partially paid) -> PAID. The outstanding balance is booked as a SETTLEMENT entry."""
    record = await _load_record_or_404(db, payment_id, for_update=True)
    if record.status != PaymentStatus.PENDING.value:
        await _reject(db, f"Cannot mark a {record.status} payment record as paid")

    amount = _to_decimal(record.amount)
    paid_before = _to_decimal(record.amount_paid)
    outstanding = amount - paid_before
    method = payload.payment_method.value if payload.payment_method else record.payment_method
    paid_date = payload.paid_date or datetime.now(timezone.utc)
    values = {
        "status": PaymentStatus.PAID.value,
        "amount_paid": PaymentRecord.amount,
        "payment_method": method,
        "paid_date": paid_date,
    }
    if payload.receipt_number:
        values["receipt_number"] = payload.receipt_number.strip()
    # Settles only the balance that was read; an installment landing in between voids the update.
    result = await db.execute(
        update(PaymentRecord)
        .where(
            PaymentRecord.id == payment_id,
            PaymentRecord.status == PaymentStatus.PENDING.value,
            PaymentRecord.amount_paid == paid_before,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _reject(db, "Payment record changed while being marked paid; reload and retry")

    if outstanding > 0:
        db.add(
            PaymentEntry(
                payment_record_id=payment_id,
                kind=PaymentEntryKind.SETTLEMENT.value,
                amount=outstanding,
                payment_method=method,
                recorded_at=paid_date,
            )
        )
    await log_fee_audit(
        db, "payment_records", payment_id,
        "MARK_PAID",
        {"status": PaymentStatus.PENDING.value, "amount_paid": str(paid_before)},
        {"status": PaymentStatus.PAID.value, "amount_paid": str(amount), "payment_method": method},
        changed_by,
    )
    await db.commit()
    logger.info("payment_record.paid", payment_id=str(payment_id), amount=str(amount), payment_method=method)
    return PaymentOutcome(payment=_to_response(await _load_record_or_404(db, payment_id)), settled=True)


async def unmark(
    db: AsyncSession,
    payment_id: UUID,
    changed_by: Optional[str] = None,
) -> PaymentOutcome:
    """PAID -> PENDING. Money received is reversed on the ledger; PENDING is a no-op, WAIVED is refused."""
    record = await _load_record_or_404(db, payment_id, for_update=True)
    if record.status == PaymentStatus.WAIVED.value:
        await _reject(db, "Cannot unmark a WAIVED payment record")
    if record.status == PaymentStatus.PENDING.value:
        response = _to_response(record)
        await db.rollback()
        return PaymentOutcome(payment=response, settled=False)

    paid = _to_decimal(record.amount_paid)
    result = await db.execute(
        update(PaymentRecord)
        .where(
            PaymentRecord.id == payment_id,
            PaymentRecord.status == PaymentStatus.PAID.value,
            PaymentRecord.amount_paid == paid,
        )
        .values(
            status=PaymentStatus.PENDING.value,
            amount_paid=ZERO,
            paid_date=None,
            receipt_number=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _reject(db, "Payment record changed while being unmarked; reload and retry")

    if paid > 0:
        db.add(
            PaymentEntry(
                payment_record_id=payment_id,
                kind=PaymentEntryKind.REVERSAL.value,
                amount=-paid,
                payment_method=record.payment_method,
            )
        )
    await log_fee_audit(
        db, "payment_records", payment_id,
        "UNMARK",
        {"status": PaymentStatus.PAID.value, "amount_paid": str(paid)},
        {"status": PaymentStatus.PENDING.value, "amount_paid": str(ZERO)},
        changed_by,
    )
    await db.commit()
    logger.info("payment_record.unmarked", payment_id=str(payment_id), reversed=str(paid))
    return PaymentOutcome(payment=_to_response(await _load_record_or_404(db, payment_id)), settled=False)


async def apply_partial_payment(
    db: AsyncSession,
    payment_id: UUID,
    payload: PartialPaymentRequest,
    changed_by: Optional[str] = None,
) -> PaymentOutcome:
    """
    Record one installment against a month's charge. Overpayment is rejected outright;
    an installment that brings the total exactly to the charge settles the record.

    The running total is advanced by a single conditional UPDATE, so concurrent
    installments serialize on the row and each one is checked against the current total.
    """
    increment = _to_decimal(payload.amount)
    if increment <= 0:
        raise ValidationError("Payment amount must be positive")
    if increment != quantize_money(increment):
        raise ValidationError("Payment amount cannot have more than two decimal places")
    record = await _load_record_or_404(db, payment_id, for_update=True)
    if record.status != PaymentStatus.PENDING.value:
        await _reject(db, f"Cannot apply a payment to a {record.status} payment record")
    method = payload.payment_method.value if payload.payment_method else record.payment_method

    new_paid = func.round(PaymentRecord.amount_paid + increment, 2)
    result = await db.execute(
        update(PaymentRecord)
        .where(
            PaymentRecord.id == payment_id,
            PaymentRecord.status == PaymentStatus.PENDING.value,
            new_paid <= PaymentRecord.amount,
        )
        .values(amount_paid=new_paid)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await _load_record_or_404(db, payment_id)
        if current.status != PaymentStatus.PENDING.value:
            raise ValidationError(f"Cannot apply a payment to a {current.status} payment record")
        raise ValidationError(
            "Payment amount cannot exceed remaining balance",
            {"remaining_balance": str(_to_decimal(current.amount) - _to_decimal(current.amount_paid))},
        )

    row = (
        await db.execute(
            select(PaymentRecord.amount, PaymentRecord.amount_paid).where(PaymentRecord.id == payment_id)
        )
    ).one()
    target = _to_decimal(row.amount)
    new_total = _to_decimal(row.amount_paid)
    paid_so_far = new_total - increment
    now = datetime.now(timezone.utc)
    settled = new_total == target
    if settled:
        await db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.id == payment_id)
            .values(status=PaymentStatus.PAID.value, paid_date=now, payment_method=method)
            .execution_options(synchronize_session=False)
        )
    db.add(
        PaymentEntry(
            payment_record_id=payment_id,
            kind=PaymentEntryKind.INCREMENT.value,
            amount=increment,
            payment_method=method,
            recorded_at=now,
        )
    )
    await log_fee_audit(
        db, "payment_records", payment_id,
        "PARTIAL_PAYMENT",
        {"amount_paid": str(paid_so_far), "status": PaymentStatus.PENDING.value},
        {
            "amount_paid": str(new_total),
            "increment": str(increment),
            "status": PaymentStatus.PAID.value if settled else PaymentStatus.PENDING.value,
        },
        changed_by,
    )
    await db.commit()
    logger.info(
        "payment_record.partial_payment",
        payment_id=str(payment_id),
        increment=str(increment),
        amount_paid=str(new_total),
        remaining_balance=str(target - new_total),
        settled=settled,
    )
    return PaymentOutcome(payment=_to_response(await _load_record_or_404(db, payment_id)), settled=settled)


async def mark_invoice_sent(
    db: AsyncSession,
    payment_id: UUID,
    payload: InvoiceSentRequest,
    changed_by: Optional[str] = None,
) -> PaymentRecordResponse:
    """Record that the invoice for an INVOICE-channel charge went out. Re-sending updates date and number."""
    record = await _load_record_or_404(db, payment_id, for_update=True)
    if record.status == PaymentStatus.WAIVED.value:
        await _reject(db, "A WAIVED payment record has nothing to invoice")
    if record.payment_method != PaymentMethod.INVOICE.value:
        await _reject(db, f"Payment record is settled by {record.payment_method}, not INVOICE")

    old_value = {
        "invoice_sent": bool(record.invoice_sent),
        "invoice_sent_date": record.invoice_sent_date.isoformat() if record.invoice_sent_date else None,
        "invoice_number": record.invoice_number,
    }
    record.invoice_sent = True
    record.invoice_sent_date = payload.sent_date or datetime.now(timezone.utc)
    if payload.invoice_number:
        record.invoice_number = payload.invoice_number.strip()
    await log_fee_audit(
        db, "payment_records", payment_id,
        "INVOICE_SENT",
        old_value,
        {
            "invoice_sent": True,
            "invoice_sent_date": record.invoice_sent_date.isoformat(),
            "invoice_number": record.invoice_number,
        },
        changed_by,
    )
    await db.commit()
    logger.info("payment_record.invoice_sent", payment_id=str(payment_id), invoice_number=record.invoice_number)
    return _to_response(await _load_record_or_404(db, payment_id))


async def _active_enrollment_pairs(db: AsyncSession) -> List[Tuple[UUID, str, str]]:
    result = await db.execute(
        select(Enrollment.id, Enrollment.student_sid, Enrollment.class_id)
        .where(Enrollment.status == EnrollmentStatus.ACTIVE.value)
        .order_by(Enrollment.student_sid, Enrollment.class_id)
    )
    return [tuple(row) for row in result.all()]


async def _generation_status(db: AsyncSession, month: int, year: int) -> Optional[PaymentGenerationStatus]:
    result = await db.execute(
        select(PaymentGenerationStatus)
        .where(PaymentGenerationStatus.year == year, PaymentGenerationStatus.month == month)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def generate_monthly_payments(
    db: AsyncSession,
    month: int,
    year: int,
    generated_by: str = "system",
) -> GenerateMonthlyResponse:
    """
    Create the month's charge for every ACTIVE enrollment. Existing tuples are skipped,
    so an interrupted run can simply be repeated; a completed month is not regenerated.
    """
    month_bounds(month, year)
    gen = await _generation_status(db, month, year)
    if gen and gen.is_complete:
        return GenerateMonthlyResponse(
            month=month,
            year=year,
            already_generated=True,
            new_count=0,
            skip_count=gen.count,
            message=f"Payments were already generated for {month}/{year}",
        )

    if gen is None:
        db.add(PaymentGenerationStatus(year=year, month=month, generated_by=generated_by, count=0, is_complete=False))
    else:
        gen.generated_at = datetime.now(timezone.utc)
        gen.generated_by = generated_by
        gen.is_complete = False
    try:
        await db.commit()
    except IntegrityError:
        # Another run registered the month first; carry on, tuples are still unique.
        await db.rollback()

    new_count = 0
    skip_count = 0
    for enrollment_id, student_sid, class_id in await _active_enrollment_pairs(db):
        try:
            await _insert_payment_record(
                db, student_sid, class_id, year, month,
                enrollment_id=enrollment_id,
                changed_by=generated_by,
            )
            new_count += 1
        except IntegrityError:
            await db.rollback()
            skip_count += 1
        except (NotFoundError, ValidationError) as e:
            await db.rollback()
            skip_count += 1
            logger.warning(
                "payment_generation.skipped",
                student_sid=student_sid,
                class_id=class_id,
                month=month,
                year=year,
                reason=e.message,
            )

    gen = await _generation_status(db, month, year)
    gen.is_complete = True
    gen.count = new_count
    await db.commit()
    logger.info("payment_generation.completed", month=month, year=year, new_count=new_count, skip_count=skip_count)
    return GenerateMonthlyResponse(
        month=month,
        year=year,
        already_generated=False,
        new_count=new_count,
        skip_count=skip_count,
        message=f"Generated {new_count} new payment records, skipped {skip_count} existing records",
    )

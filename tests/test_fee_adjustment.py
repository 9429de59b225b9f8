from datetime import date
from decimal import Decimal
from typing import Dict
from uuid import UUID

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.api.v1.enrollments import service as enrollments_service
from tuition_billing.api.v1.payments import service as payments_service
from tuition_billing.api.v1.payments.schemas import MarkPaidRequest, PartialPaymentRequest, PaymentRecordCreate
from tuition_billing.core.enums import CascadeItemStatus, CascadeJobStatus, PaymentStatus
from tuition_billing.core.exceptions import NotFoundError, ValidationError
from tuition_billing.core.models import Enrollment, PaymentRecord

from conftest import add_class, add_enrollment, add_student


async def _bill(db: AsyncSession, month: int, sid: str = "S001", class_id: str = "MATH-10") -> UUID:
    record = await payments_service.create_payment_record(
        db, PaymentRecordCreate(student_sid=sid, class_id=class_id, academic_year=2024, month=month)
    )
    return record.id


async def _records(db: AsyncSession, sid: str = "S001", class_id: str = "MATH-10") -> Dict[int, tuple]:
    rows = await db.execute(
        select(PaymentRecord.month, PaymentRecord.amount, PaymentRecord.status, PaymentRecord.notes).where(
            PaymentRecord.student_sid == sid, PaymentRecord.class_id == class_id
        )
    )
    return {month: (amount, status, notes) for month, amount, status, notes in rows.all()}


@pytest.fixture()
async def billed(db_session: AsyncSession, enrolled: Enrollment) -> UUID:
    """January to March billed for S001/MATH-10, plus neighbouring charges that must not move."""
    enrollment_id = enrolled.id
    for month in (1, 2, 3):
        await _bill(db_session, month)
    await add_student(db_session, "S002")
    await add_enrollment(db_session, "S002", "MATH-10", date(2023, 9, 1))
    await _bill(db_session, 2, sid="S002")
    await add_class(db_session, "ART-01", monthly_fee=Decimal("60.00"))
    await add_enrollment(db_session, "S001", "ART-01", date(2023, 9, 1))
    await _bill(db_session, 2, class_id="ART-01")
    return enrollment_id


@pytest.mark.asyncio
async def test_adjustment_reprices_every_month_of_the_pair(db_session: AsyncSession, billed: UUID) -> None:
    result = await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("80.00"))

    assert result.enrollment.adjusted_fee == Decimal("80.00")
    assert result.warnings == []
    assert result.cascade.status == CascadeJobStatus.COMPLETED
    assert result.cascade.total_items == 3
    assert {i.status for i in result.cascade.items} == {CascadeItemStatus.DONE}

    records = await _records(db_session)
    assert records[1][0] == Decimal("60.00")
    assert records[2][0] == Decimal("80.00")
    assert records[3][0] == Decimal("80.00")
    assert "adjusted to 60.00 based on enrollment fee change" in records[1][2]

    assert (await _records(db_session, sid="S002"))[2][0] == Decimal("100.00")
    assert (await _records(db_session, class_id="ART-01"))[2][0] == Decimal("60.00")

    # Charges created after the adjustment use the new fee.
    april = await payments_service.get_payment_record(db_session, await _bill(db_session, 4))
    assert april.amount == Decimal("80.00")


@pytest.mark.asyncio
async def test_invalid_fee_changes_nothing(db_session: AsyncSession, billed: UUID) -> None:
    for fee in (Decimal("-1.00"), Decimal("10.001")):
        with pytest.raises(ValidationError):
            await enrollments_service.set_adjusted_fee(db_session, billed, fee)
    enrollment = await enrollments_service.get_enrollment_by_id(db_session, billed)
    assert enrollment.adjusted_fee is None
    assert (await _records(db_session))[2][0] == Decimal("100.00")


@pytest.mark.asyncio
async def test_unknown_enrollment(db_session: AsyncSession) -> None:
    with pytest.raises(NotFoundError):
        await enrollments_service.set_adjusted_fee(
            db_session, UUID("00000000-0000-0000-0000-000000000000"), Decimal("10.00")
        )


@pytest.mark.asyncio
async def test_partial_failure_keeps_fee_and_is_retriable(
    db_session: AsyncSession, billed: UUID, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = payments_service.charge_for

    def flaky_charge(fee, enrollment_date, month, year):
        if month == 2:
            raise ValidationError("pricing unavailable")
        return original(fee, enrollment_date, month, year)

    monkeypatch.setattr(payments_service, "charge_for", flaky_charge)
    result = await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("80.00"))

    assert result.enrollment.adjusted_fee == Decimal("80.00")
    assert result.cascade.status == CascadeJobStatus.PARTIAL
    assert result.cascade.failed_items == 1
    assert len(result.warnings) == 1
    assert result.warnings[0].message == "pricing unavailable"
    records = await _records(db_session)
    assert records[1][0] == Decimal("60.00")
    assert records[2][0] == Decimal("100.00")
    assert records[3][0] == Decimal("80.00")

    monkeypatch.undo()
    retried = await enrollments_service.retry_fee_cascade(db_session, result.cascade.id)
    assert retried.cascade.status == CascadeJobStatus.COMPLETED
    assert retried.cascade.failed_items == 0
    assert retried.cascade.attempts == 2
    assert retried.warnings == []
    records = await _records(db_session)
    assert records[2][0] == Decimal("80.00")
    assert records[1][2].count("adjusted to") == 1


@pytest.mark.asyncio
async def test_payments_above_new_charge_are_reported(db_session: AsyncSession, billed: UUID) -> None:
    feb = (await payments_service.list_payment_records(db_session, student_sid="S001", class_id="MATH-10", month=2)).items[0]
    await payments_service.apply_partial_payment(db_session, feb.id, PartialPaymentRequest(amount=Decimal("90.00")))

    result = await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("80.00"))

    assert result.cascade.status == CascadeJobStatus.PARTIAL
    assert [w.payment_record_id for w in result.warnings] == [feb.id]
    records = await _records(db_session)
    assert records[2][0] == Decimal("100.00")
    assert records[3][0] == Decimal("80.00")


@pytest.mark.asyncio
async def test_status_follows_recomputed_amount(db_session: AsyncSession, billed: UUID) -> None:
    listed = await payments_service.list_payment_records(db_session, student_sid="S001", class_id="MATH-10")
    by_month = {r.month: r.id for r in listed.items}
    await payments_service.mark_paid(db_session, by_month[2], MarkPaidRequest())
    await payments_service.apply_partial_payment(db_session, by_month[3], PartialPaymentRequest(amount=Decimal("80.00")))

    await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("80.00"))
    records = await _records(db_session)
    # Fully paid at the old fee is more than the new charge.
    assert records[2][1] == PaymentStatus.PAID.value
    assert records[3] == (Decimal("80.00"), PaymentStatus.PAID.value, records[3][2])

    await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("120.00"))
    feb = await payments_service.get_payment_record(db_session, by_month[2])
    assert feb.amount == Decimal("120.00")
    assert feb.status == PaymentStatus.PENDING
    assert feb.paid_date is None
    assert feb.remaining_balance == Decimal("20.00")

    await enrollments_service.set_adjusted_fee(db_session, billed, Decimal("0.00"))
    records = await _records(db_session)
    assert records[1][:2] == (Decimal("0.00"), PaymentStatus.WAIVED.value)

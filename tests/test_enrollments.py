from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.api.v1.enrollments import service as enrollments_service
from tuition_billing.api.v1.enrollments.schemas import EnrollmentCreate, EnrollmentStatusUpdate
from tuition_billing.core.enums import EnrollmentStatus, PaymentStatus
from tuition_billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from tuition_billing.core.models import PaymentRecord

from conftest import add_class, add_student


@pytest.fixture()
async def directory(db_session: AsyncSession) -> None:
    await add_student(db_session, "S001")
    await add_class(db_session, "MATH-10")


def _enroll(enrollment_date: date, **kwargs) -> EnrollmentCreate:
    return EnrollmentCreate(student_sid="S001", class_id="MATH-10", enrollment_date=enrollment_date, **kwargs)


@pytest.mark.asyncio
async def test_enrollment_bills_first_month(db_session: AsyncSession, directory: None) -> None:
    result = await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 2, 15)))
    assert result.enrollment.status == EnrollmentStatus.ACTIVE
    assert result.enrollment.end_date is None
    assert result.first_payment is not None
    assert result.first_payment.month == 2
    assert result.first_payment.academic_year == 2024
    assert result.first_payment.amount == Decimal("50.00")
    assert result.first_payment.enrollment_id == result.enrollment.id


@pytest.mark.asyncio
async def test_enrollment_without_first_bill(db_session: AsyncSession, directory: None) -> None:
    result = await enrollments_service.create_enrollment(
        db_session, _enroll(date(2024, 2, 15), bill_first_month=False)
    )
    assert result.first_payment is None
    count = (await db_session.execute(select(func.count(PaymentRecord.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_enrollment_requires_student_and_class(db_session: AsyncSession, directory: None) -> None:
    with pytest.raises(NotFoundError):
        await enrollments_service.create_enrollment(
            db_session, EnrollmentCreate(student_sid="S999", class_id="MATH-10")
        )
    with pytest.raises(NotFoundError):
        await enrollments_service.create_enrollment(
            db_session, EnrollmentCreate(student_sid="S001", class_id="NOPE")
        )


@pytest.mark.asyncio
async def test_only_one_active_enrollment_per_pair(db_session: AsyncSession, directory: None) -> None:
    first = await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 1, 10)))
    with pytest.raises(ConflictError) as exc:
        await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 3, 1)))
    assert exc.value.existing.id == first.enrollment.id


@pytest.mark.asyncio
async def test_reenrollment_in_same_month_reuses_charge(db_session: AsyncSession, directory: None) -> None:
    first = await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 1, 10)))
    withdrawn = await enrollments_service.update_enrollment_status(
        db_session,
        first.enrollment.id,
        EnrollmentStatusUpdate(status=EnrollmentStatus.WITHDRAWN, end_date=date(2024, 1, 20)),
    )
    assert withdrawn.status == EnrollmentStatus.WITHDRAWN
    assert withdrawn.end_date == date(2024, 1, 20)

    second = await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 1, 25)))
    assert second.enrollment.id != first.enrollment.id
    assert second.first_payment.id == first.first_payment.id
    assert second.first_payment.amount == Decimal("75.00")

    owner = await enrollments_service.get_enrollment(db_session, "S001", "MATH-10")
    assert owner.id == second.enrollment.id

    with pytest.raises(ConflictError):
        await enrollments_service.update_enrollment_status(
            db_session, first.enrollment.id, EnrollmentStatusUpdate(status=EnrollmentStatus.ACTIVE)
        )


@pytest.mark.asyncio
async def test_end_date_cannot_precede_enrollment(db_session: AsyncSession, directory: None) -> None:
    created = await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 1, 10)))
    with pytest.raises(ValidationError):
        await enrollments_service.update_enrollment_status(
            db_session,
            created.enrollment.id,
            EnrollmentStatusUpdate(status=EnrollmentStatus.COMPLETED, end_date=date(2024, 1, 1)),
        )
    current = await enrollments_service.get_enrollment_by_id(db_session, created.enrollment.id)
    assert current.status == EnrollmentStatus.ACTIVE


@pytest.mark.asyncio
async def test_enrollment_with_adjusted_fee(db_session: AsyncSession, directory: None) -> None:
    result = await enrollments_service.create_enrollment(
        db_session, _enroll(date(2024, 1, 1), adjusted_fee=Decimal("0.00"))
    )
    assert result.first_payment.status == PaymentStatus.WAIVED

    with pytest.raises(ValidationError):
        await enrollments_service.create_enrollment(
            db_session,
            EnrollmentCreate(student_sid="S001", class_id="MATH-10", adjusted_fee=Decimal("-5")),
        )


@pytest.mark.asyncio
async def test_list_enrollments(db_session: AsyncSession, directory: None) -> None:
    await add_class(db_session, "ART-01")
    await enrollments_service.create_enrollment(db_session, _enroll(date(2024, 1, 10)))
    await enrollments_service.create_enrollment(
        db_session, EnrollmentCreate(student_sid="S001", class_id="ART-01", enrollment_date=date(2024, 1, 10))
    )
    assert len(await enrollments_service.list_enrollments(db_session, student_sid="S001")) == 2
    art = await enrollments_service.list_enrollments(db_session, class_id="ART-01")
    assert [e.class_id for e in art] == ["ART-01"]
    assert await enrollments_service.list_enrollments(db_session, status_filter=EnrollmentStatus.WITHDRAWN) == []


@pytest.mark.asyncio
async def test_ended_enrollment_cannot_end_before_it_starts(db_session: AsyncSession, directory: None) -> None:
    starts = date.today() + timedelta(days=30)
    with pytest.raises(ValidationError):
        await enrollments_service.create_enrollment(
            db_session, _enroll(starts, status=EnrollmentStatus.WITHDRAWN)
        )
    with pytest.raises(ValidationError):
        await enrollments_service.create_enrollment(
            db_session, _enroll(starts, status=EnrollmentStatus.COMPLETED, end_date=starts - timedelta(days=1))
        )
    assert await enrollments_service.list_enrollments(db_session, student_sid="S001") == []

    created = await enrollments_service.create_enrollment(
        db_session, _enroll(starts, status=EnrollmentStatus.COMPLETED, end_date=starts + timedelta(days=60))
    )
    assert created.enrollment.end_date == starts + timedelta(days=60)
    assert created.first_payment is None

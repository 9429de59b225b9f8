from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tuition_billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from tuition_billing.core.models import SchoolClass

from .schemas import ClassCreate, ClassResponse

WEEKDAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


async def create_class(db: AsyncSession, payload: ClassCreate) -> ClassResponse:
    days = [d.strip().upper() for d in payload.schedule_days]
    invalid = [d for d in days if d not in WEEKDAYS]
    if invalid:
        raise ValidationError(f"Invalid schedule day(s): {', '.join(invalid)}")
    if payload.start_time and payload.end_time and payload.end_time <= payload.start_time:
        raise ValidationError("end_time must be after start_time")
    cl = SchoolClass(
        class_id=payload.class_id.strip(),
        name=payload.name.strip(),
        center_id=payload.center_id,
        monthly_fee=payload.monthly_fee,
        schedule_days=sorted(set(days), key=WEEKDAYS.index),
        start_time=payload.start_time,
        end_time=payload.end_time,
    )
    db.add(cl)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await db.get(SchoolClass, payload.class_id.strip())
        raise ConflictError(
            f"Class '{payload.class_id}' already exists",
            ClassResponse.model_validate(existing) if existing else None,
        )
    await db.refresh(cl)
    return ClassResponse.model_validate(cl)


async def get_class(db: AsyncSession, class_id: str) -> Optional[SchoolClass]:
    return await db.get(SchoolClass, class_id)


async def get_class_or_404(db: AsyncSession, class_id: str) -> SchoolClass:
    cl = await get_class(db, class_id)
    if not cl:
        raise NotFoundError(f"Class '{class_id}' not found")
    return cl

"""
Proration of a monthly class fee for the month a student starts being billed.

Pure functions only. The four-week model splits every month into nominal weeks
(1-7, 8-14, 15-21, 22-end) so that "joined in week 2" always means 3/4 of the fee.
The calendar-weeks model uses ceil(days_in_month / 7) weeks instead.
"""

import calendar
import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from tuition_billing.core.enums import ProrationMode
from tuition_billing.core.exceptions import ValidationError

CENT = Decimal("0.01")
NOMINAL_WEEKS = 4


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_period(month: Optional[int] = None, year: Optional[int] = None) -> None:
    """Range-check whichever of month and year is given."""
    if month is not None and (not isinstance(month, int) or not 1 <= month <= 12):
        raise ValidationError(f"Invalid month: {month!r}")
    if year is not None and (not isinstance(year, int) or not 1 <= year <= 9999):
        raise ValidationError(f"Invalid year: {year!r}")


def month_bounds(month: int, year: int) -> Tuple[date, date]:
    """First and last calendar day of (month, year)."""
    if month is None or year is None:
        raise ValidationError("Month and year are required")
    validate_period(month, year)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def enrollment_week(day_of_month: int) -> int:
    """Nominal week (1-4) of a day of month; days 22 onwards all fall in week 4."""
    return min(math.ceil(day_of_month / 7), NOMINAL_WEEKS)


def due_date_for(month: int, year: int, due_day: int) -> date:
    first, last = month_bounds(month, year)
    return first.replace(day=min(due_day, last.day))


def compute_charge(
    base_fee: Decimal,
    enrollment_date: date,
    target_month: int,
    target_year: int,
    mode: ProrationMode = ProrationMode.FOUR_WEEK,
) -> Decimal:
    """
    Charge owed for (target_month, target_year) by a student billed from enrollment_date.

    Full fee if billing started before the month, zero if it starts after the month
    (callers record zero as a waiver), otherwise the remaining share of the month's
    weeks rounded half-up to cents.
    """
    base_fee = Decimal(str(base_fee))
    if base_fee <= 0:
        raise ValidationError("Base fee must be positive")
    if not isinstance(enrollment_date, date):
        raise ValidationError("Enrollment date must be a calendar date")
    if isinstance(enrollment_date, datetime):
        enrollment_date = enrollment_date.date()
    month_start, month_end = month_bounds(target_month, target_year)

    if enrollment_date < month_start:
        return quantize_money(base_fee)
    if enrollment_date > month_end:
        return Decimal("0.00")

    if mode == ProrationMode.CALENDAR_WEEKS:
        weeks_in_month = math.ceil(month_end.day / 7)
        week = math.ceil(enrollment_date.day / 7)
        if week == 1:
            return quantize_money(base_fee)
    else:
        weeks_in_month = NOMINAL_WEEKS
        week = enrollment_week(enrollment_date.day)

    remaining_weeks = weeks_in_month - week + 1
    return quantize_money(Decimal(remaining_weeks) / Decimal(weeks_in_month) * base_fee)

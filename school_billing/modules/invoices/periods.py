"""Billing period arithmetic. Pure functions, no database access."""

import calendar
from datetime import date, timedelta

from school_billing.core.exceptions import ValidationError
from school_billing.modules.courses.models import PERIODIC_FREQUENCIES, BillingFrequency

# Days after period start when an invoice falls due if the student has no enrollment day
DUE_DATE_OFFSET_DAYS = {
    BillingFrequency.WEEKLY.value: 7,
    BillingFrequency.MONTHLY.value: 10,
    BillingFrequency.QUARTERLY.value: 10,
    BillingFrequency.ANNUAL.value: 30,
}
DEFAULT_DUE_DATE_OFFSET_DAYS = 10


def period_start(frequency: str | None, reference_date: date) -> date:
    """
    First day of the billing period containing ``reference_date``.

    Weekly periods start on Monday (a Sunday belongs to the week that started
    six days earlier). Unknown frequencies are treated as monthly.

    Examples:
        >>> period_start("weekly", date(2025, 3, 16))  # Sunday
        datetime.date(2025, 3, 10)
        >>> period_start("quarterly", date(2025, 5, 20))
        datetime.date(2025, 4, 1)
    """
    if frequency == BillingFrequency.WEEKLY:
        return reference_date - timedelta(days=reference_date.weekday())
    if frequency == BillingFrequency.QUARTERLY:
        quarter_month = (reference_date.month - 1) // 3 * 3 + 1
        return date(reference_date.year, quarter_month, 1)
    if frequency == BillingFrequency.ANNUAL:
        return date(reference_date.year, 1, 1)
    return reference_date.replace(day=1)


def due_date(frequency: str | None, start: date, enrollment_date: date | None = None) -> date:
    """
    Due date of an invoice for the period starting at ``start``.

    The student's enrollment day-of-month is used within the period's month,
    clamped to the month's last day (enrolled on the 31st, due on Feb 28).
    Without an enrollment date the frequency offset from ``start`` applies.
    """
    if enrollment_date is not None:
        last_day = calendar.monthrange(start.year, start.month)[1]
        return date(start.year, start.month, min(enrollment_date.day, last_day))
    offset = DUE_DATE_OFFSET_DAYS.get(str(frequency), DEFAULT_DUE_DATE_OFFSET_DAYS)
    return start + timedelta(days=offset)


def period_label(frequency: str | None, start: date) -> str:
    """Human readable period used in notifications, e.g. ``March 2025``."""
    if frequency == BillingFrequency.WEEKLY:
        return f"Week of {start.strftime('%d %b %Y')}"
    return f"{calendar.month_name[start.month]} {start.year}"


def validate_frequency(frequency: str) -> BillingFrequency:
    """Parse a periodic billing frequency or raise ValidationError."""
    valid = [f.value for f in PERIODIC_FREQUENCIES]
    if frequency not in valid:
        raise ValidationError(
            f"Invalid frequency '{frequency}'. Must be one of: {', '.join(valid)}",
            field="frequency",
        )
    return BillingFrequency(frequency)


def validate_month(period_year: int, period_month: int) -> date:
    """Return the first day of the given month or raise ValidationError."""
    if not 1 <= period_month <= 12:
        raise ValidationError("Month must be between 1 and 12", field="month")
    if not 1 <= period_year <= 9999:
        raise ValidationError("Invalid year", field="year")
    return date(period_year, period_month, 1)


def parse_year_month(value: str, field: str) -> tuple[int, int]:
    """Parse ``YYYY-MM`` into (year, month)."""
    try:
        year_part, month_part = value.split("-")
        year, month = int(year_part), int(month_part)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid {field} '{value}', expected YYYY-MM", field=field)
    validate_month(year, month)
    return year, month


def months_between(from_month: str, to_month: str) -> list[tuple[int, int]]:
    """
    Every (year, month) from ``from_month`` to ``to_month`` inclusive.

    Examples:
        >>> months_between("2024-11", "2025-02")
        [(2024, 11), (2024, 12), (2025, 1), (2025, 2)]
    """
    year, month = parse_year_month(from_month, "from")
    end_year, end_month = parse_year_month(to_month, "to")
    if (year, month) > (end_year, end_month):
        raise ValidationError("'from' month must not be after 'to' month", field="from")

    months: list[tuple[int, int]] = []
    while (year, month) <= (end_year, end_month):
        months.append((year, month))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months

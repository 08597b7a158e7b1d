"""Amount calculation for periodic invoices."""

from decimal import Decimal

from school_billing.modules.courses.models import CourseFeeStructure
from school_billing.shared.utils.money import ZERO, round_money, round_whole, to_decimal


def fee_structure_amount(fee_structure: CourseFeeStructure) -> Decimal:
    """
    Gross amount billed per period for a course.

    ``per_period_amount`` wins when set (zero included). Otherwise the sum of the
    components, unless there are none or they add up to zero, then ``total_amount``.
    """
    if fee_structure.per_period_amount is not None:
        return round_money(fee_structure.per_period_amount)

    components_total = sum(
        (to_decimal(component.amount) for component in fee_structure.components), ZERO
    )
    if components_total:
        return round_money(components_total)

    if fee_structure.total_amount is not None:
        return round_money(fee_structure.total_amount)
    return ZERO


def scholarship_amount(amount: Decimal, percentage: Decimal | int | float | None) -> Decimal:
    """Scholarship deduction rounded to a whole currency unit; zero without a scholarship."""
    pct = to_decimal(percentage)
    if pct <= 0:
        return ZERO
    return round_whole(to_decimal(amount) * pct / Decimal(100))


def invoice_components(fee_structure: CourseFeeStructure) -> list[dict]:
    """Fee component snapshot stored on an invoice."""
    return [component.to_invoice_component() for component in fee_structure.components]

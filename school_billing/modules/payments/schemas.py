"""Schemas for Payments module."""

from decimal import Decimal

from pydantic import BaseModel


class StudentCreditBalance(BaseModel):
    """Student's credit: completed payments less everything already allocated."""

    student_id: int
    total_payments: Decimal
    total_allocated: Decimal
    available_balance: Decimal


class CreditApplicationResult(BaseModel):
    """Outcome of applying available credit to a freshly generated invoice."""

    applied: bool
    amount: Decimal = Decimal("0.00")
    reason: str | None = None
    invoice_status: str | None = None
    remaining_credit: Decimal = Decimal("0.00")

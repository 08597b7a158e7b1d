"""Schemas for invoice notifications."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class InvoiceNotification(BaseModel):
    """One newly created invoice to tell a student about."""

    student_id: int
    invoice_id: int
    amount: Decimal
    due_date: date
    period: str
    branch_id: int | None = None


class NotificationError(BaseModel):
    student_id: int
    invoice_id: int
    error: str


class NotificationResult(BaseModel):
    """Summary of a notification batch. Failures are counted, never raised."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[NotificationError] = Field(default_factory=list)

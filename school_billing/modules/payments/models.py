"""Payment and CreditAllocation models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_billing.core.database.base import Base, BigIntPK


class PaymentMethod(StrEnum):
    """Payment method options."""

    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CARD = "card"


class PaymentStatus(StrEnum):
    """Payment status options."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Payment(Base):
    """
    Payment record - represents a credit top-up for a student.

    A completed payment adds to the student's credit balance, which is then
    allocated to invoices (automatically when a new invoice is generated).
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )
    branch_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=True, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # M-Pesa transaction ID, bank reference

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value


class CreditAllocation(Base):
    """
    Credit allocation - represents allocation of credit balance to an invoice.

    When credit is allocated to an invoice, the invoice's amount_paid increases
    and the student's available credit balance decreases.
    """

    __tablename__ = "credit_allocations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )
    invoice_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("invoices.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # NULL for automatic allocations made by the billing engine
    allocated_by_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="allocations")


# Import for type hints
from school_billing.modules.students.models import Student
from school_billing.modules.invoices.models import Invoice

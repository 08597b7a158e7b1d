"""Invoice model."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_billing.core.database.base import Base, BigIntPK


class InvoiceStatus(StrEnum):
    """Invoice status enumeration."""

    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


class Invoice(Base):
    """
    Periodic fee invoice of a student.

    Either one invoice per (student, course, period), or, in consolidated mode,
    one invoice per (student, period) merging the fee components of every course.
    Both natural keys are enforced by partial unique indexes; the pre-insert scan
    in the generation service is only an optimisation.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        Index(
            "uq_invoices_student_period_consolidated",
            "student_id",
            "period_start",
            unique=True,
            sqlite_where=text("is_consolidated = 1 AND fee_structure_id IS NULL"),
            postgresql_where=text("is_consolidated AND fee_structure_id IS NULL"),
        ),
        Index(
            "uq_invoices_student_course_period",
            "student_id",
            "course_id",
            "period_start",
            unique=True,
            sqlite_where=text("is_consolidated = 0"),
            postgresql_where=text("NOT is_consolidated"),
        ),
        Index("ix_invoices_course_period", "course_id", "period_year", "period_month"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # Relations
    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=False, index=True
    )
    # Primary course (first course of a consolidated invoice)
    course_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("courses.id"), nullable=True, index=True
    )
    # Legacy class-level fee structures; always NULL for course billing
    fee_structure_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)

    # Type and status
    invoice_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )  # billing frequency: weekly | monthly | quarterly | annual
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.UNPAID.value, index=True
    )

    # Billing period
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    is_consolidated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Snapshot of the fee components billed (one list, merged across courses when consolidated)
    fee_components: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Amounts (Decimal with 2 decimal places). total_amount_due is gross;
    # scholarship is kept separately and deducted in balance.
    total_amount_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    scholarship_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # course_ids / consolidated_course_count for consolidated invoices
    invoice_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_by_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    course: Mapped["Course | None"] = relationship("Course")
    allocations: Mapped[list["CreditAllocation"]] = relationship(
        "CreditAllocation", back_populates="invoice"
    )

    @property
    def balance(self) -> Decimal:
        """Amount still owed: gross total less payments, discount and scholarship."""
        return (
            self.total_amount_due
            - self.amount_paid
            - self.discount_amount
            - self.scholarship_amount
        )

    @property
    def can_receive_payment(self) -> bool:
        return self.status in (
            InvoiceStatus.UNPAID.value,
            InvoiceStatus.PARTIALLY_PAID.value,
            InvoiceStatus.OVERDUE.value,
        )

    @property
    def course_ids(self) -> list[int]:
        """All courses billed by this invoice."""
        if self.invoice_metadata and self.invoice_metadata.get("course_ids"):
            return list(self.invoice_metadata["course_ids"])
        return [self.course_id] if self.course_id is not None else []


# Import at the end to avoid circular imports
from school_billing.modules.students.models import Student
from school_billing.modules.courses.models import Course
from school_billing.modules.payments.models import CreditAllocation

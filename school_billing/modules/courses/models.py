"""Course, CourseFeeStructure and FeeComponent models."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_billing.core.database.base import BaseModel, BigIntPK


class BillingFrequency(StrEnum):
    """How often a course is billed."""

    TERM = "term"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


# Frequencies billed by the periodic invoice engine (term fees are billed elsewhere)
PERIODIC_FREQUENCIES = (
    BillingFrequency.WEEKLY,
    BillingFrequency.MONTHLY,
    BillingFrequency.QUARTERLY,
    BillingFrequency.ANNUAL,
)


class FeeCategory(StrEnum):
    """Category of a fee component."""

    TUITION = "tuition"
    EXAM = "exam"
    MATERIALS = "materials"
    LAB = "lab"
    OTHER = "other"


class Course(BaseModel):
    """Course offered by a branch."""

    __tablename__ = "courses"

    branch_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    fee_structure: Mapped["CourseFeeStructure | None"] = relationship(
        "CourseFeeStructure",
        back_populates="course",
        uselist=False,
        cascade="all, delete-orphan",
    )


class CourseFeeStructure(BaseModel):
    """
    Billing configuration of a course.

    The amount billed per period is resolved in this order: ``per_period_amount``
    when set, else the sum of the components (when non-zero), else ``total_amount``.
    """

    __tablename__ = "course_fee_structures"

    course_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    billing_frequency: Mapped[str | None] = mapped_column(
        String(20), nullable=True, index=True
    )  # term | weekly | monthly | quarterly | annual
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    per_period_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    # Bill the first period straight away when a student enrolls
    create_invoice_on_enrollment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Relationships
    course: Mapped["Course"] = relationship("Course", back_populates="fee_structure")
    components: Mapped[list["FeeComponent"]] = relationship(
        "FeeComponent",
        back_populates="fee_structure",
        cascade="all, delete-orphan",
        order_by="FeeComponent.id",
        lazy="selectin",
    )

    @property
    def is_periodic(self) -> bool:
        return self.billing_frequency in [f.value for f in PERIODIC_FREQUENCIES]


class FeeComponent(BaseModel):
    """Line of a course fee structure (tuition, exam fee, materials...)."""

    __tablename__ = "course_fee_components"

    fee_structure_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("course_fee_structures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeCategory.TUITION.value
    )
    is_optional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    fee_structure: Mapped["CourseFeeStructure"] = relationship(
        "CourseFeeStructure", back_populates="components"
    )

    def to_invoice_component(self) -> dict:
        """Snapshot stored on the invoice (JSON)."""
        return {
            "name": self.name,
            "amount": str(self.amount),
            "category": self.category,
            "is_optional": self.is_optional,
            "description": self.description,
        }

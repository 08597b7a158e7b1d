"""Student and CourseEnrollment models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_billing.core.database.base import Base, BigIntPK


class AcademicStatus(StrEnum):
    """Academic status of a student."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    WITHDRAWN = "withdrawn"
    GRADUATED = "graduated"


# Students in these states keep being billed for their active enrollments
BILLABLE_ACADEMIC_STATUSES = (AcademicStatus.ACTIVE.value, AcademicStatus.INACTIVE.value)


class EnrollmentStatus(StrEnum):
    """Status of a student's enrollment in a course."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class Student(Base):
    """Student of a branch."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    branch_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=False, index=True
    )
    # Login account used as the recipient of in-app notices
    user_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True
    )

    # Day-of-month of enrollment drives invoice due dates
    enrollment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scholarship_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0.00")
    )
    academic_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AcademicStatus.ACTIVE.value, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user: Mapped["User | None"] = relationship("User")
    enrollments: Mapped[list["CourseEnrollment"]] = relationship(
        "CourseEnrollment", back_populates="student"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_billable(self) -> bool:
        return self.academic_status in BILLABLE_ACADEMIC_STATUSES


class CourseEnrollment(Base):
    """Enrollment of a student in a course."""

    __tablename__ = "course_enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_course_enrollments_student_course"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )
    course_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("courses.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value, index=True
    )
    enrolled_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student", back_populates="enrollments")
    course: Mapped["Course"] = relationship("Course")


# Import at the end to avoid circular imports
from school_billing.modules.branches.models import Branch
from school_billing.modules.users.models import User
from school_billing.modules.courses.models import Course

"""Queries deciding which courses and students are billed for a period."""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from school_billing.modules.courses.models import Course, CourseFeeStructure
from school_billing.modules.invoices.models import Invoice
from school_billing.modules.students.models import (
    BILLABLE_ACADEMIC_STATUSES,
    CourseEnrollment,
    EnrollmentStatus,
    Student,
)


class EligibilityScanner:
    """Read-only scans used by invoice generation. Results may be stale by insert time."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def billable_courses(self, frequency: str, branch_id: int | None = None) -> list[Course]:
        """Courses with an active fee structure billed at ``frequency``."""
        query = (
            select(Course)
            .join(CourseFeeStructure, CourseFeeStructure.course_id == Course.id)
            .where(
                CourseFeeStructure.billing_frequency == frequency,
                CourseFeeStructure.is_active.is_(True),
            )
            .options(selectinload(Course.fee_structure).selectinload(CourseFeeStructure.components))
            .order_by(Course.id)
        )
        if branch_id is not None:
            query = query.where(Course.branch_id == branch_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def eligible_students(self, course: Course, student_id: int | None = None) -> list[Student]:
        """
        Students billed for a course: active enrollment, academic status active or
        inactive, and belonging to the course's branch.
        """
        query = (
            select(Student)
            .join(CourseEnrollment, CourseEnrollment.student_id == Student.id)
            .where(
                CourseEnrollment.course_id == course.id,
                CourseEnrollment.status == EnrollmentStatus.ACTIVE.value,
                Student.branch_id == course.branch_id,
                Student.academic_status.in_(BILLABLE_ACADEMIC_STATUSES),
            )
            .order_by(Student.id)
        )
        if student_id is not None:
            query = query.where(Student.id == student_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def consolidated_invoiced_students(
        self, start: date, branch_id: int | None = None
    ) -> set[int]:
        """
        Students that already have an invoice starting at ``start`` with no
        class-level fee structure. Applies to every course of a consolidated run.
        """
        query = select(Invoice.student_id).where(
            Invoice.period_start == start,
            Invoice.fee_structure_id.is_(None),
        )
        if branch_id is not None:
            query = query.where(Invoice.branch_id == branch_id)
        result = await self.db.execute(query)
        return set(result.scalars().all())

    async def course_invoiced_students(
        self, course_id: int, period_year: int, period_month: int
    ) -> set[int]:
        """Students already billed for a course in the given month."""
        result = await self.db.execute(
            select(Invoice.student_id).where(
                Invoice.course_id == course_id,
                Invoice.period_year == period_year,
                Invoice.period_month == period_month,
            )
        )
        return set(result.scalars().all())

    async def course_invoiced_students_for_period_start(
        self, course_id: int, start: date
    ) -> set[int]:
        """Students already billed for a course in the period starting at ``start``."""
        result = await self.db.execute(
            select(Invoice.student_id).where(
                Invoice.course_id == course_id,
                Invoice.period_start == start,
            )
        )
        return set(result.scalars().all())

    async def student_has_course_invoice(self, student_id: int, course_id: int, start: date) -> bool:
        result = await self.db.execute(
            select(Invoice.id)
            .where(
                Invoice.student_id == student_id,
                Invoice.course_id == course_id,
                Invoice.period_start == start,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

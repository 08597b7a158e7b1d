"""Service for Courses module: enrollments."""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from school_billing.core.audit.service import AuditAction, AuditService
from school_billing.core.exceptions import DuplicateError, NotFoundError, ValidationError
from school_billing.modules.courses.models import Course
from school_billing.modules.invoices.schemas import EnrollmentInvoiceResult
from school_billing.modules.invoices.service import InvoiceGenerationService
from school_billing.modules.notifications.service import InvoiceNotifier
from school_billing.modules.students.models import CourseEnrollment, EnrollmentStatus, Student

logger = logging.getLogger(__name__)


class CourseService:
    """Service for course enrollments."""

    def __init__(self, db: AsyncSession, notifier: InvoiceNotifier | None = None):
        self.db = db
        self.audit = AuditService(db)
        self.notifier = notifier

    async def get_course_by_id(self, course_id: int) -> Course:
        """Get course with its fee structure (and components) loaded."""
        result = await self.db.execute(
            select(Course)
            .where(Course.id == course_id)
            .options(selectinload(Course.fee_structure))
        )
        course = result.scalar_one_or_none()
        if not course:
            raise NotFoundError("Course", course_id)
        return course

    async def enroll_student(
        self,
        student_id: int,
        course_id: int,
        enrolled_by_id: int | None = None,
        on_date: date | None = None,
    ) -> tuple[CourseEnrollment, EnrollmentInvoiceResult]:
        """
        Enroll a student in a course (reactivating a dropped enrollment) and bill
        the current period when the course is configured to invoice on enrollment.
        """
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)
        course = await self.get_course_by_id(course_id)
        if not course.is_active:
            raise ValidationError(f"Course '{course.name}' is not active", field="course_id")
        if course.branch_id != student.branch_id:
            raise ValidationError("Student and course belong to different branches", field="course_id")

        result = await self.db.execute(
            select(CourseEnrollment).where(
                CourseEnrollment.student_id == student_id,
                CourseEnrollment.course_id == course_id,
            )
        )
        enrollment = result.scalar_one_or_none()
        if enrollment and enrollment.status == EnrollmentStatus.ACTIVE.value:
            raise DuplicateError("CourseEnrollment", "student_id", student_id)

        if enrollment:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            enrollment.enrolled_on = on_date or date.today()
        else:
            enrollment = CourseEnrollment(
                student_id=student_id,
                course_id=course_id,
                status=EnrollmentStatus.ACTIVE.value,
                enrolled_on=on_date or date.today(),
            )
            self.db.add(enrollment)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.ENROLL_STUDENT,
            entity_type="CourseEnrollment",
            entity_id=enrollment.id,
            user_id=enrolled_by_id,
            new_values={"student_id": student_id, "course_id": course_id},
        )
        await self.db.commit()

        generator = InvoiceGenerationService(self.db, notifier=self.notifier)
        invoice_result = await generator.create_invoice_for_enrollment(
            student_id, course, on_date=on_date, initiated_by_id=enrolled_by_id
        )
        if not invoice_result.created:
            logger.info(
                "No enrollment invoice for student %s, course %s: %s",
                student_id,
                course_id,
                invoice_result.reason,
            )
        await self.db.refresh(enrollment)
        return enrollment, invoice_result

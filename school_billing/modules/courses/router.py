"""API endpoints for Courses module."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.database.session import get_db
from school_billing.modules.courses.schemas import EnrollmentCreate, EnrollmentResponse
from school_billing.modules.courses.service import CourseService
from school_billing.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/courses", tags=["Courses"])


@router.post(
    "/{course_id}/enrollments",
    response_model=ApiResponse[EnrollmentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def enroll_student(
    course_id: int,
    data: EnrollmentCreate,
    db: AsyncSession = Depends(get_db),
):
    """Enroll a student; bills the current period if the course invoices on enrollment."""
    service = CourseService(db)
    enrollment, invoice_result = await service.enroll_student(
        data.student_id, course_id, enrolled_by_id=data.enrolled_by_id, on_date=data.on_date
    )
    return ApiResponse(
        success=True,
        message="Student enrolled",
        data=EnrollmentResponse(
            id=enrollment.id,
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            status=enrollment.status,
            enrolled_on=enrollment.enrolled_on,
            invoice=invoice_result,
        ),
    )

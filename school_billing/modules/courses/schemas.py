"""Schemas for Courses module."""

from datetime import date

from pydantic import BaseModel

from school_billing.modules.invoices.schemas import EnrollmentInvoiceResult


class EnrollmentCreate(BaseModel):
    student_id: int
    enrolled_by_id: int | None = None
    on_date: date | None = None


class EnrollmentResponse(BaseModel):
    id: int
    student_id: int
    course_id: int
    status: str
    enrolled_on: date | None
    invoice: EnrollmentInvoiceResult

    model_config = {"from_attributes": True}

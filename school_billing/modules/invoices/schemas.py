"""Schemas for Invoices module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from school_billing.modules.courses.models import BillingFrequency
from school_billing.modules.invoices.models import InvoiceStatus


class SkipReason:
    """Reasons an enrollment was not billed in a run."""

    HAS_INVOICE = "has_invoice"
    DUPLICATE = "duplicate"
    ERROR = "error"


class EnrollmentInvoiceReason:
    """Reasons ``create_invoice_for_enrollment`` did not create an invoice."""

    NO_FEE_STRUCTURE = "no_fee_structure"
    NOT_PERIODIC = "not_periodic"
    NOT_CONFIGURED = "not_configured"
    EXISTS = "exists"


# --- Generation results ---


class GeneratedInvoice(BaseModel):
    """Invoice created by a generation run."""

    invoice_id: int
    student_id: int
    course_id: int | None
    course_ids: list[int] = Field(default_factory=list)
    amount: Decimal
    scholarship_amount: Decimal = Decimal("0.00")
    due_date: date
    is_consolidated: bool = False


class SkippedEnrollment(BaseModel):
    """(course, student) pair skipped by a generation run."""

    course_id: int | None
    student_id: int
    reason: str
    error: str | None = None


class InvoiceGenerationDetails(BaseModel):
    created: list[GeneratedInvoice] = Field(default_factory=list)
    skipped: list[SkippedEnrollment] = Field(default_factory=list)


class InvoiceGenerationResult(BaseModel):
    """Result of a periodic invoice generation run."""

    frequency: str = BillingFrequency.MONTHLY.value
    period_start: date | None = None
    created: int = 0
    skipped: int = 0
    notifications_sent: int = 0
    details: InvoiceGenerationDetails = Field(default_factory=InvoiceGenerationDetails)


class EnrollmentInvoiceResult(BaseModel):
    """Result of billing the first period right after an enrollment."""

    created: int = 0
    reason: str | None = None
    invoice_id: int | None = None


# --- Manual trigger ---


class InvoiceGenerationRequest(BaseModel):
    """Manual trigger of a generation run. Month and year default to today."""

    year: int | None = Field(None, ge=2000, le=2100)
    month: int | None = Field(None, ge=1, le=12)
    branch_id: int | None = None
    student_id: int | None = None
    frequency: str = BillingFrequency.MONTHLY.value
    consolidate: bool = True
    initiated_by_id: int | None = None


# --- Responses ---


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    id: int
    student_id: int
    student_name: str | None = None
    branch_id: int
    course_id: int | None
    course_ids: list[int] = Field(default_factory=list)
    academic_year: str
    invoice_type: str
    status: str
    period_year: int
    period_month: int
    period_start: date
    is_consolidated: bool
    fee_components: list[dict] = Field(default_factory=list)
    total_amount_due: float
    discount_amount: float
    scholarship_amount: float
    amount_paid: float
    balance: float
    due_date: date
    created_by_id: int | None

    model_config = {"from_attributes": True}


# --- Filters ---


class InvoiceFilters(BaseModel):
    """Filters for listing invoices."""

    student_id: int | None = None
    branch_id: int | None = None
    course_id: int | None = None
    invoice_type: BillingFrequency | None = None
    status: InvoiceStatus | None = None
    period_year: int | None = None
    period_month: int | None = Field(None, ge=1, le=12)
    page: int = Field(1, ge=1)
    limit: int = Field(100, ge=1, le=500)

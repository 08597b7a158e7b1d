"""API endpoints for Invoices module."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.database.session import get_db
from school_billing.modules.courses.models import BillingFrequency
from school_billing.modules.invoices.models import Invoice, InvoiceStatus
from school_billing.modules.invoices.periods import validate_frequency
from school_billing.modules.invoices.schemas import (
    InvoiceFilters,
    InvoiceGenerationRequest,
    InvoiceGenerationResult,
    InvoiceResponse,
)
from school_billing.modules.invoices.service import InvoiceGenerationService, InvoiceService
from school_billing.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def _invoice_to_response(invoice: Invoice) -> InvoiceResponse:
    """Convert Invoice model to response schema."""
    return InvoiceResponse(
        id=invoice.id,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        branch_id=invoice.branch_id,
        course_id=invoice.course_id,
        course_ids=invoice.course_ids,
        academic_year=invoice.academic_year,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        period_year=invoice.period_year,
        period_month=invoice.period_month,
        period_start=invoice.period_start,
        is_consolidated=invoice.is_consolidated,
        fee_components=invoice.fee_components or [],
        total_amount_due=float(invoice.total_amount_due),
        discount_amount=float(invoice.discount_amount),
        scholarship_amount=float(invoice.scholarship_amount),
        amount_paid=float(invoice.amount_paid),
        balance=float(invoice.balance),
        due_date=invoice.due_date,
        created_by_id=invoice.created_by_id,
    )


@router.post(
    "/generate",
    response_model=ApiResponse[InvoiceGenerationResult],
)
async def generate_invoices(
    data: InvoiceGenerationRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Manually run periodic invoice generation.

    Monthly runs bill the given month (consolidated by default); other
    frequencies bill the period containing the 1st of the given month.
    Access control is applied by the host application.
    """
    frequency = validate_frequency(data.frequency)
    today = date.today()
    year = data.year or today.year
    month = data.month or today.month

    service = InvoiceGenerationService(db)
    if frequency == BillingFrequency.MONTHLY:
        result = await service.generate_monthly_invoices(
            period_year=year,
            period_month=month,
            branch_id=data.branch_id,
            student_id=data.student_id,
            initiated_by_id=data.initiated_by_id,
            consolidate=data.consolidate,
        )
    else:
        result = await service.generate_invoices_for_frequency(
            frequency.value,
            on_date=date(year, month, 1),
            branch_id=data.branch_id,
            initiated_by_id=data.initiated_by_id,
            student_id=data.student_id,
        )

    return ApiResponse(
        success=True,
        message=f"{result.created} invoices generated, {result.skipped} skipped",
        data=result,
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceResponse]],
)
async def list_invoices(
    student_id: int | None = Query(None),
    branch_id: int | None = Query(None),
    course_id: int | None = Query(None),
    invoice_type: BillingFrequency | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    period_year: int | None = Query(None),
    period_month: int | None = Query(None, ge=1, le=12),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with optional filters."""
    filters = InvoiceFilters(
        student_id=student_id,
        branch_id=branch_id,
        course_id=course_id,
        invoice_type=invoice_type,
        status=status,
        period_year=period_year,
        period_month=period_month,
        page=page,
        limit=limit,
    )
    service = InvoiceService(db)
    invoices, total = await service.list_invoices(filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[_invoice_to_response(invoice) for invoice in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get invoice by ID."""
    service = InvoiceService(db)
    invoice = await service.get_invoice_by_id(invoice_id)
    return ApiResponse(success=True, data=_invoice_to_response(invoice))

"""Service for student credit and its application to invoices."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.audit.service import AuditAction, AuditService
from school_billing.core.exceptions import NotFoundError, ValidationError
from school_billing.modules.invoices.models import Invoice, InvoiceStatus
from school_billing.modules.payments.models import CreditAllocation, Payment, PaymentStatus
from school_billing.modules.payments.schemas import CreditApplicationResult, StudentCreditBalance
from school_billing.shared.utils.money import round_money

logger = logging.getLogger(__name__)


class CreditReason:
    NO_CREDIT = "no_credit"
    INVOICE_SETTLED = "invoice_settled"


class CreditService:
    """Reads student credit and allocates it to invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_student_credit_balance(self, student_id: int) -> StudentCreditBalance:
        """Get student's available credit balance."""
        payments_result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.student_id == student_id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
        )
        total_payments = Decimal(str(payments_result.scalar() or 0))

        allocations_result = await self.db.execute(
            select(func.coalesce(func.sum(CreditAllocation.amount), 0)).where(
                CreditAllocation.student_id == student_id
            )
        )
        total_allocated = Decimal(str(allocations_result.scalar() or 0))

        return StudentCreditBalance(
            student_id=student_id,
            total_payments=round_money(total_payments),
            total_allocated=round_money(total_allocated),
            available_balance=round_money(total_payments - total_allocated),
        )

    async def apply_credit_to_new_invoice(
        self,
        student_id: int,
        invoice_id: int,
        allocated_by_id: int | None = None,
    ) -> CreditApplicationResult:
        """
        Allocate the student's available credit to an invoice.

        Allocates min(available credit, invoice balance) and moves the invoice to
        paid or partially_paid. Commits on success; nothing is written when there
        is no credit or nothing owed.
        """
        result = await self.db.execute(select(Invoice).where(Invoice.id == invoice_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        if invoice.student_id != student_id:
            raise ValidationError("Invoice does not belong to this student")

        credit = await self.get_student_credit_balance(student_id)
        available = credit.available_balance
        if available <= 0:
            return CreditApplicationResult(
                applied=False,
                reason=CreditReason.NO_CREDIT,
                invoice_status=invoice.status,
            )

        outstanding = round_money(invoice.balance)
        if outstanding <= 0 or not invoice.can_receive_payment:
            return CreditApplicationResult(
                applied=False,
                reason=CreditReason.INVOICE_SETTLED,
                invoice_status=invoice.status,
                remaining_credit=available,
            )

        amount = min(available, outstanding)
        old_values = {"amount_paid": str(invoice.amount_paid), "status": invoice.status}

        allocation = CreditAllocation(
            student_id=student_id,
            invoice_id=invoice.id,
            amount=amount,
            allocated_by_id=allocated_by_id,
        )
        self.db.add(allocation)

        invoice.amount_paid = round_money(invoice.amount_paid + amount)
        if invoice.balance <= 0:
            invoice.status = InvoiceStatus.PAID.value
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID.value

        await self.audit.log(
            action=AuditAction.APPLY_CREDIT,
            entity_type="Invoice",
            entity_id=invoice.id,
            user_id=allocated_by_id,
            old_values=old_values,
            new_values={
                "amount_paid": str(invoice.amount_paid),
                "status": invoice.status,
                "allocated": str(amount),
            },
        )
        await self.db.commit()

        logger.info(
            "Applied credit %s to invoice %s of student %s (%s)",
            amount,
            invoice.id,
            student_id,
            invoice.status,
        )
        return CreditApplicationResult(
            applied=True,
            amount=amount,
            invoice_status=invoice.status,
            remaining_credit=round_money(available - amount),
        )

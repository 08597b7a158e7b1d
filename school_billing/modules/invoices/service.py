"""Service for Invoices module: periodic invoice generation and invoice queries."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from school_billing.core.audit.service import AuditAction, AuditService
from school_billing.core.database.bulk import insert_ignoring_conflicts
from school_billing.core.exceptions import NotFoundError
from school_billing.modules.courses.models import BillingFrequency, Course, CourseFeeStructure
from school_billing.modules.invoices.amounts import (
    fee_structure_amount,
    invoice_components,
    scholarship_amount,
)
from school_billing.modules.invoices.eligibility import EligibilityScanner
from school_billing.modules.invoices.models import Invoice, InvoiceStatus
from school_billing.modules.invoices.periods import (
    due_date,
    period_label,
    period_start,
    validate_frequency,
    validate_month,
)
from school_billing.modules.invoices.schemas import (
    EnrollmentInvoiceReason,
    EnrollmentInvoiceResult,
    GeneratedInvoice,
    InvoiceFilters,
    InvoiceGenerationResult,
    SkippedEnrollment,
    SkipReason,
)
from school_billing.modules.notifications.schemas import InvoiceNotification
from school_billing.modules.notifications.service import InvoiceNotifier, build_invoice_notifier
from school_billing.modules.payments.service import CreditService
from school_billing.modules.students.models import Student
from school_billing.shared.utils.money import round_money

logger = logging.getLogger(__name__)

_RETURNING = ("id", "student_id", "course_id")


class InvoiceGenerationService:
    """
    Generates periodic (weekly/monthly/quarterly/annual) course invoices.

    A run scans billable courses and their eligible students, computes amounts,
    bulk-inserts the invoices, then applies student credit (consolidated invoices
    only) and sends notifications.
    Duplicate protection comes from the unique indexes on ``invoices``: rows the
    database rejects are reported as skipped, never as errors. Per-student and
    post-processing failures are recorded and the run carries on; database
    failures propagate.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: InvoiceNotifier | None = None,
        credit_service: CreditService | None = None,
    ):
        self.db = db
        self.audit = AuditService(db)
        self.scanner = EligibilityScanner(db)
        self.notifier = notifier if notifier is not None else build_invoice_notifier(db)
        self.credit = credit_service if credit_service is not None else CreditService(db)

    # --- Public API ---

    async def generate_monthly_invoices(
        self,
        period_year: int,
        period_month: int,
        branch_id: int | None = None,
        student_id: int | None = None,
        initiated_by_id: int | None = None,
        consolidate: bool = True,
    ) -> InvoiceGenerationResult:
        """
        Generate monthly invoices for the given month.

        With ``consolidate`` every student gets one invoice merging all their
        monthly courses, and students with any invoice for the month are skipped.
        Without it, one invoice per (student, course) is created.
        """
        start = validate_month(period_year, period_month)
        frequency = BillingFrequency.MONTHLY.value

        courses = await self.scanner.billable_courses(frequency, branch_id)
        logger.info(
            "Monthly invoices %s: %d courses (branch=%s, student=%s, consolidate=%s)",
            start.strftime("%Y-%m"),
            len(courses),
            branch_id,
            student_id,
            consolidate,
        )
        result = InvoiceGenerationResult(frequency=frequency, period_start=start)

        if consolidate:
            created_rows = await self._generate_consolidated(
                courses, start, branch_id, student_id, initiated_by_id, result
            )
        else:
            created_rows = []
            for course in courses:
                already_billed = await self.scanner.course_invoiced_students(
                    course.id, period_year, period_month
                )
                created_rows += await self._generate_for_course(
                    course, frequency, start, already_billed, student_id, initiated_by_id, result
                )

        return await self._finish_run(result, created_rows, branch_id, initiated_by_id)

    async def generate_invoices_for_frequency(
        self,
        frequency: str,
        on_date: date | None = None,
        branch_id: int | None = None,
        initiated_by_id: int | None = None,
        student_id: int | None = None,
    ) -> InvoiceGenerationResult:
        """Generate one invoice per (student, course) for the period of ``frequency`` containing ``on_date``."""
        frequency = validate_frequency(frequency).value
        start = period_start(frequency, on_date or date.today())

        courses = await self.scanner.billable_courses(frequency, branch_id)
        logger.info(
            "%s invoices from %s: %d courses (branch=%s)",
            frequency.capitalize(),
            start.isoformat(),
            len(courses),
            branch_id,
        )
        result = InvoiceGenerationResult(frequency=frequency, period_start=start)

        created_rows: list[dict[str, Any]] = []
        for course in courses:
            already_billed = await self.scanner.course_invoiced_students_for_period_start(
                course.id, start
            )
            created_rows += await self._generate_for_course(
                course, frequency, start, already_billed, student_id, initiated_by_id, result
            )

        return await self._finish_run(result, created_rows, branch_id, initiated_by_id)

    async def create_invoice_for_enrollment(
        self,
        student_id: int,
        course: Course | None,
        on_date: date | None = None,
        initiated_by_id: int | None = None,
    ) -> EnrollmentInvoiceResult:
        """Bill the current period right away when a student enrolls in a periodic course."""
        fee_structure = course.fee_structure if course is not None else None
        if fee_structure is None:
            return EnrollmentInvoiceResult(reason=EnrollmentInvoiceReason.NO_FEE_STRUCTURE)
        if not fee_structure.billing_frequency or not fee_structure.is_periodic:
            return EnrollmentInvoiceResult(reason=EnrollmentInvoiceReason.NOT_PERIODIC)
        if not fee_structure.create_invoice_on_enrollment:
            return EnrollmentInvoiceResult(reason=EnrollmentInvoiceReason.NOT_CONFIGURED)

        frequency = fee_structure.billing_frequency
        start = period_start(frequency, on_date or date.today())

        if await self.scanner.student_has_course_invoice(student_id, course.id, start):
            return EnrollmentInvoiceResult(reason=EnrollmentInvoiceReason.EXISTS)

        student = await self.db.get(Student, student_id)
        if student is None:
            raise NotFoundError("Student", student_id)

        row = self._build_row(student, course, frequency, start, initiated_by_id)
        stored = await insert_ignoring_conflicts(
            self.db, Invoice.__table__, [row], returning=_RETURNING
        )
        if not stored:
            # Lost a race with a concurrent run
            return EnrollmentInvoiceResult(reason=EnrollmentInvoiceReason.EXISTS)
        row["id"] = stored[0]["id"]
        await self.db.commit()
        logger.info(
            "Enrollment invoice %s created for student %s, course %s", row["id"], student_id, course.id
        )

        await self._notify([row])
        return EnrollmentInvoiceResult(created=1, invoice_id=row["id"])

    # --- Generation steps ---

    async def _generate_consolidated(
        self,
        courses: list[Course],
        start: date,
        branch_id: int | None,
        student_id: int | None,
        initiated_by_id: int | None,
        result: InvoiceGenerationResult,
    ) -> list[dict[str, Any]]:
        already_billed = await self.scanner.consolidated_invoiced_students(start, branch_id)
        logger.info("Found %d students already invoiced for %s", len(already_billed), start)

        drafts: dict[int, dict[str, Any]] = {}
        students: dict[int, Student] = {}
        for course in courses:
            for student in await self.scanner.eligible_students(course, student_id):
                if student.id in already_billed:
                    self._skip(result, course.id, student.id, SkipReason.HAS_INVOICE)
                    continue
                try:
                    row = self._build_row(
                        student, course, BillingFrequency.MONTHLY.value, start, initiated_by_id,
                        consolidated=True,
                    )
                except Exception as e:
                    logger.exception("Invoice for student %s, course %s failed", student.id, course.id)
                    self._skip(result, course.id, student.id, SkipReason.ERROR, error=str(e))
                    continue

                if student.id in drafts:
                    self._merge_into(drafts[student.id], row)
                else:
                    drafts[student.id] = row
                    students[student.id] = student

        # Scholarship applies to the merged total
        for sid, row in drafts.items():
            row["scholarship_amount"] = scholarship_amount(
                row["total_amount_due"], students[sid].scholarship_percentage
            )

        logger.info("Prepared %d consolidated invoices", len(drafts))
        return await self._insert(list(drafts.values()), result)

    async def _generate_for_course(
        self,
        course: Course,
        frequency: str,
        start: date,
        already_billed: set[int],
        student_id: int | None,
        initiated_by_id: int | None,
        result: InvoiceGenerationResult,
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for student in await self.scanner.eligible_students(course, student_id):
            if student.id in already_billed:
                self._skip(result, course.id, student.id, SkipReason.HAS_INVOICE)
                continue
            try:
                rows.append(self._build_row(student, course, frequency, start, initiated_by_id))
            except Exception as e:
                logger.exception("Invoice for student %s, course %s failed", student.id, course.id)
                self._skip(result, course.id, student.id, SkipReason.ERROR, error=str(e))
        return await self._insert(rows, result)

    def _build_row(
        self,
        student: Student,
        course: Course,
        frequency: str,
        start: date,
        initiated_by_id: int | None,
        consolidated: bool = False,
    ) -> dict[str, Any]:
        """Column values of one invoice for a (student, course) pair."""
        fee_structure: CourseFeeStructure = course.fee_structure
        amount = fee_structure_amount(fee_structure)
        return {
            "student_id": student.id,
            "branch_id": course.branch_id,
            "course_id": course.id,
            "fee_structure_id": None,
            "academic_year": fee_structure.academic_year or str(start.year),
            "invoice_type": frequency,
            "status": InvoiceStatus.UNPAID.value,
            "period_year": start.year,
            "period_month": start.month,
            "period_start": start,
            "is_consolidated": consolidated,
            "fee_components": invoice_components(fee_structure),
            "total_amount_due": amount,
            "discount_amount": Decimal("0.00"),
            "scholarship_amount": scholarship_amount(amount, student.scholarship_percentage),
            "amount_paid": Decimal("0.00"),
            "due_date": due_date(frequency, start, student.enrollment_date),
            "metadata": (
                {"course_ids": [course.id], "consolidated_course_count": 1} if consolidated else None
            ),
            "created_by_id": initiated_by_id,
        }

    @staticmethod
    def _merge_into(draft: dict[str, Any], row: dict[str, Any]) -> None:
        """Fold another course of the same student into a consolidated draft."""
        draft["fee_components"] = draft["fee_components"] + row["fee_components"]
        draft["total_amount_due"] = round_money(draft["total_amount_due"] + row["total_amount_due"])
        course_ids = draft["metadata"]["course_ids"] + [row["course_id"]]
        draft["metadata"] = {"course_ids": course_ids, "consolidated_course_count": len(course_ids)}

    async def _insert(
        self, rows: list[dict[str, Any]], result: InvoiceGenerationResult
    ) -> list[dict[str, Any]]:
        """Bulk insert rows, record created and duplicate-skipped invoices, return stored rows."""
        if not rows:
            return []
        stored = await insert_ignoring_conflicts(
            self.db, Invoice.__table__, rows, returning=_RETURNING
        )
        ids = {(r["student_id"], r["course_id"]): r["id"] for r in stored}

        created_rows: list[dict[str, Any]] = []
        for row in rows:
            invoice_id = ids.get((row["student_id"], row["course_id"]))
            if invoice_id is None:
                self._skip(result, row["course_id"], row["student_id"], SkipReason.DUPLICATE)
                continue
            row["id"] = invoice_id
            created_rows.append(row)
            result.created += 1
            result.details.created.append(
                GeneratedInvoice(
                    invoice_id=invoice_id,
                    student_id=row["student_id"],
                    course_id=row["course_id"],
                    course_ids=(row["metadata"] or {}).get("course_ids", [row["course_id"]]),
                    amount=row["total_amount_due"],
                    scholarship_amount=row["scholarship_amount"],
                    due_date=row["due_date"],
                    is_consolidated=row["is_consolidated"],
                )
            )
        if len(created_rows) < len(rows):
            logger.warning(
                "%d invoices already existed at insert time", len(rows) - len(created_rows)
            )
        return created_rows

    async def _finish_run(
        self,
        result: InvoiceGenerationResult,
        created_rows: list[dict[str, Any]],
        branch_id: int | None,
        initiated_by_id: int | None,
    ) -> InvoiceGenerationResult:
        """Commit the invoices, apply credit to consolidated ones, then notify."""
        start = result.period_start
        await self.audit.log(
            action=AuditAction.GENERATE_INVOICES,
            entity_type="InvoicePeriod",
            entity_id=int(start.strftime("%Y%m%d")),
            entity_identifier=f"{result.frequency}:{start.isoformat()}",
            user_id=initiated_by_id,
            new_values={
                "branch_id": branch_id,
                "created": result.created,
                "skipped": result.skipped,
            },
        )
        await self.db.commit()
        logger.info(
            "%s invoices for %s: %d created, %d skipped",
            result.frequency.capitalize(),
            start.isoformat(),
            result.created,
            result.skipped,
        )

        await self._apply_credit(
            [row for row in created_rows if row["is_consolidated"]], initiated_by_id
        )
        result.notifications_sent = await self._notify(created_rows)
        return result

    async def _apply_credit(self, rows: list[dict[str, Any]], initiated_by_id: int | None) -> None:
        """Apply student credit to each new invoice; one failure never affects the others."""
        for row in rows:
            try:
                await self.credit.apply_credit_to_new_invoice(
                    row["student_id"], row["id"], allocated_by_id=initiated_by_id
                )
            except Exception:
                await self.db.rollback()
                logger.exception(
                    "Applying credit to invoice %s of student %s failed", row["id"], row["student_id"]
                )

    async def _notify(self, rows: list[dict[str, Any]]) -> int:
        """Notify students of new invoices. Returns how many notifications were sent."""
        if not rows:
            return 0
        notifications = [
            InvoiceNotification(
                student_id=row["student_id"],
                invoice_id=row["id"],
                amount=row["total_amount_due"],
                due_date=row["due_date"],
                period=period_label(row["invoice_type"], row["period_start"]),
                branch_id=row["branch_id"],
            )
            for row in rows
        ]
        try:
            outcome = await self.notifier.notify(notifications)
        except Exception:
            await self.db.rollback()
            logger.exception("Sending %d invoice notifications failed", len(notifications))
            return 0
        if outcome.failed:
            logger.warning("%d of %d invoice notifications failed", outcome.failed, outcome.total)
        return outcome.successful

    @staticmethod
    def _skip(
        result: InvoiceGenerationResult,
        course_id: int | None,
        student_id: int,
        reason: str,
        error: str | None = None,
    ) -> None:
        result.skipped += 1
        result.details.skipped.append(
            SkippedEnrollment(course_id=course_id, student_id=student_id, reason=reason, error=error)
        )


class InvoiceService:
    """Read access to invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_invoice_by_id(self, invoice_id: int) -> Invoice:
        """Get invoice by ID with student loaded."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(selectinload(Invoice.student))
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices(self, filters: InvoiceFilters) -> tuple[list[Invoice], int]:
        """List invoices with filters."""
        query = (
            select(Invoice)
            .options(selectinload(Invoice.student))
            .order_by(Invoice.period_start.desc(), Invoice.id.desc())
        )

        if filters.student_id is not None:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.branch_id is not None:
            query = query.where(Invoice.branch_id == filters.branch_id)
        if filters.course_id is not None:
            query = query.where(Invoice.course_id == filters.course_id)
        if filters.invoice_type is not None:
            query = query.where(Invoice.invoice_type == filters.invoice_type.value)
        if filters.status is not None:
            query = query.where(Invoice.status == filters.status.value)
        if filters.period_year is not None:
            query = query.where(Invoice.period_year == filters.period_year)
        if filters.period_month is not None:
            query = query.where(Invoice.period_month == filters.period_month)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total_result = await self.db.execute(count_query)
        total = total_result.scalar() or 0

        # Apply pagination
        offset = (filters.page - 1) * filters.limit
        query = query.offset(offset).limit(filters.limit)

        result = await self.db.execute(query)
        invoices = list(result.scalars().all())

        return invoices, total

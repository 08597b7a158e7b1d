from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.audit.models import AuditLog
from school_billing.core.exceptions import ValidationError
from school_billing.modules.courses.models import BillingFrequency
from school_billing.modules.invoices import service as invoice_service_module
from school_billing.modules.invoices.models import Invoice, InvoiceStatus
from school_billing.modules.invoices.schemas import SkipReason
from school_billing.modules.invoices.service import InvoiceGenerationService
from school_billing.modules.notifications.service import NullInvoiceNotifier
from school_billing.modules.students.models import AcademicStatus, EnrollmentStatus


async def _invoices(db: AsyncSession, **filters) -> list[Invoice]:
    query = select(Invoice).order_by(Invoice.student_id, Invoice.course_id)
    for name, value in filters.items():
        query = query.where(getattr(Invoice, name) == value)
    result = await db.execute(query)
    return list(result.scalars().all())


class TestMonthlyGeneration:
    """Tests for InvoiceGenerationService.generate_monthly_invoices."""

    async def _setup_two_students(self, factory) -> dict:
        """One monthly course (total 1000) with two active students."""
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        first = await factory.student(branch)
        second = await factory.student(branch)
        await factory.enroll(first, course)
        await factory.enroll(second, course)
        return {"branch": branch, "course": course, "students": [first, second]}

    def _service(self, db_session: AsyncSession) -> InvoiceGenerationService:
        return InvoiceGenerationService(db_session, notifier=NullInvoiceNotifier())

    async def test_creates_one_invoice_per_student(self, db_session: AsyncSession, factory):
        data = await self._setup_two_students(factory)
        service = self._service(db_session)

        result = await service.generate_monthly_invoices(2025, 3)

        assert result.created == 2
        assert result.skipped == 0
        assert result.period_start == date(2025, 3, 1)
        invoices = await _invoices(db_session)
        assert len(invoices) == 2
        for invoice in invoices:
            assert invoice.course_id == data["course"].id
            assert invoice.branch_id == data["branch"].id
            assert invoice.total_amount_due == Decimal("1000.00")
            assert invoice.status == InvoiceStatus.UNPAID.value
            assert invoice.invoice_type == BillingFrequency.MONTHLY.value
            assert invoice.period_start == date(2025, 3, 1)
            assert invoice.period_year == 2025
            assert invoice.period_month == 3
            assert invoice.is_consolidated is True
            assert invoice.fee_structure_id is None

    async def test_second_run_is_idempotent(self, db_session: AsyncSession, factory):
        await self._setup_two_students(factory)
        service = self._service(db_session)

        first = await service.generate_monthly_invoices(2025, 3)
        second = await service.generate_monthly_invoices(2025, 3)

        assert first.created == 2
        assert second.created == 0
        assert second.skipped == first.created
        assert {s.reason for s in second.details.skipped} == {SkipReason.HAS_INVOICE}
        assert len(await _invoices(db_session)) == 2

    async def test_second_run_skips_each_course_of_a_consolidated_student(
        self, db_session: AsyncSession, factory
    ):
        branch = await factory.branch()
        piano = await factory.course(branch, total_amount="1000")
        guitar = await factory.course(branch, total_amount="500")
        student = await factory.student(branch)
        await factory.enroll(student, piano)
        await factory.enroll(student, guitar)
        service = self._service(db_session)

        first = await service.generate_monthly_invoices(2025, 3)
        second = await service.generate_monthly_invoices(2025, 3)

        # One merged invoice, but skips are counted per (course, student) pair
        assert first.created == 1
        assert (second.created, second.skipped) == (0, 2)
        assert {s.course_id for s in second.details.skipped} == {piano.id, guitar.id}
        assert len(await _invoices(db_session)) == 1

    async def test_next_month_bills_again(self, db_session: AsyncSession, factory):
        await self._setup_two_students(factory)
        service = self._service(db_session)

        march = await service.generate_monthly_invoices(2025, 3)
        march_again = await service.generate_monthly_invoices(2025, 3)
        april = await service.generate_monthly_invoices(2025, 4)

        assert (march.created, march.skipped) == (2, 0)
        assert (march_again.created, march_again.skipped) == (0, 2)
        assert (april.created, april.skipped) == (2, 0)
        assert len(await _invoices(db_session, period_start=date(2025, 4, 1))) == 2

    async def test_consolidates_courses_of_a_student(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        maths = await factory.course(branch, per_period_amount="1000")
        science = await factory.course(
            branch, components=[("Tuition", "400"), ("Lab", "100")]
        )
        student = await factory.student(branch)
        await factory.enroll(student, maths)
        await factory.enroll(student, science)
        service = self._service(db_session)

        result = await service.generate_monthly_invoices(2025, 3)

        assert result.created == 1
        [invoice] = await _invoices(db_session)
        assert invoice.total_amount_due == Decimal("1500.00")
        assert invoice.course_id == maths.id
        assert invoice.invoice_metadata["course_ids"] == [maths.id, science.id]
        assert invoice.invoice_metadata["consolidated_course_count"] == 2
        assert [c["name"] for c in invoice.fee_components] == ["Tuition", "Lab"]
        assert result.details.created[0].course_ids == [maths.id, science.id]

    async def test_without_consolidation_one_invoice_per_course(
        self, db_session: AsyncSession, factory
    ):
        branch = await factory.branch()
        maths = await factory.course(branch, per_period_amount="1000")
        science = await factory.course(branch, per_period_amount="500")
        student = await factory.student(branch)
        await factory.enroll(student, maths)
        await factory.enroll(student, science)
        service = self._service(db_session)

        result = await service.generate_monthly_invoices(2025, 3, consolidate=False)
        again = await service.generate_monthly_invoices(2025, 3, consolidate=False)

        assert result.created == 2
        invoices = await _invoices(db_session)
        assert [i.course_id for i in invoices] == [maths.id, science.id]
        assert all(i.is_consolidated is False for i in invoices)
        assert [i.total_amount_due for i in invoices] == [Decimal("1000.00"), Decimal("500.00")]
        assert (again.created, again.skipped) == (0, 2)

    async def test_consolidated_run_skips_students_billed_per_course(
        self, db_session: AsyncSession, factory
    ):
        await self._setup_two_students(factory)
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 3, consolidate=False)
        result = await service.generate_monthly_invoices(2025, 3, consolidate=True)

        assert result.created == 0
        assert result.skipped == 2

    async def test_scholarship_is_recorded_separately(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        student = await factory.student(branch, scholarship_percentage="20")
        await factory.enroll(student, course)
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 3)

        [invoice] = await _invoices(db_session)
        assert invoice.scholarship_amount == Decimal("200.00")
        assert invoice.total_amount_due == Decimal("1000.00")
        assert invoice.balance == Decimal("800.00")

    async def test_scholarship_applies_to_consolidated_total(
        self, db_session: AsyncSession, factory
    ):
        branch = await factory.branch()
        first = await factory.course(branch, per_period_amount="625")
        second = await factory.course(branch, per_period_amount="625")
        student = await factory.student(branch, scholarship_percentage="15")
        await factory.enroll(student, first)
        await factory.enroll(student, second)
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 3)

        [invoice] = await _invoices(db_session)
        # 15% of 1250 = 187.5
        assert invoice.scholarship_amount == Decimal("188.00")

    async def test_eligibility_filters(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        other_branch = await factory.branch("West Campus")
        course = await factory.course(branch, total_amount="1000")

        active = await factory.student(branch)
        inactive = await factory.student(branch, academic_status=AcademicStatus.INACTIVE)
        withdrawn = await factory.student(branch, academic_status=AcademicStatus.WITHDRAWN)
        suspended = await factory.student(branch, academic_status=AcademicStatus.SUSPENDED)
        dropped = await factory.student(branch)
        elsewhere = await factory.student(other_branch)
        for student in (active, inactive, withdrawn, suspended, elsewhere):
            await factory.enroll(student, course)
        await factory.enroll(dropped, course, status=EnrollmentStatus.DROPPED)
        service = self._service(db_session)

        result = await service.generate_monthly_invoices(2025, 3)

        assert result.created == 2
        billed = {invoice.student_id for invoice in await _invoices(db_session)}
        assert billed == {active.id, inactive.id}

    async def test_only_active_monthly_fee_structures_are_billed(
        self, db_session: AsyncSession, factory
    ):
        branch = await factory.branch()
        monthly = await factory.course(branch, total_amount="1000")
        weekly = await factory.course(branch, BillingFrequency.WEEKLY, total_amount="100")
        disabled = await factory.course(branch, total_amount="300", fee_structure_active=False)
        student = await factory.student(branch)
        for course in (monthly, weekly, disabled):
            await factory.enroll(student, course)
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 3)

        [invoice] = await _invoices(db_session)
        assert invoice.invoice_metadata["course_ids"] == [monthly.id]
        assert invoice.total_amount_due == Decimal("1000.00")

    async def test_due_dates(self, db_session: AsyncSession, factory):
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        on_15th = await factory.student(branch, enrollment_date=date(2024, 9, 15))
        on_31st = await factory.student(branch, enrollment_date=date(2024, 1, 31))
        no_date = await factory.student(branch)
        for student in (on_15th, on_31st, no_date):
            await factory.enroll(student, course)
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 2)

        due = {i.student_id: i.due_date for i in await _invoices(db_session)}
        assert due[on_15th.id] == date(2025, 2, 15)
        assert due[on_31st.id] == date(2025, 2, 28)
        assert due[no_date.id] == date(2025, 2, 11)

    async def test_branch_and_student_filters(self, db_session: AsyncSession, factory):
        data = await self._setup_two_students(factory)
        other_branch = await factory.branch("West Campus")
        other_course = await factory.course(other_branch, total_amount="700")
        outsider = await factory.student(other_branch)
        await factory.enroll(outsider, other_course)
        first, second = data["students"]
        service = self._service(db_session)

        only_first = await service.generate_monthly_invoices(2025, 3, student_id=first.id)
        main_branch = await service.generate_monthly_invoices(
            2025, 3, branch_id=data["branch"].id
        )

        assert only_first.created == 1
        assert only_first.details.created[0].student_id == first.id
        assert main_branch.created == 1
        assert main_branch.details.created[0].student_id == second.id
        assert not await _invoices(db_session, student_id=outsider.id)

    async def test_initiator_recorded_and_run_audited(self, db_session: AsyncSession, factory):
        await self._setup_two_students(factory)
        admin = await factory.user()
        admin_id = admin.id
        service = self._service(db_session)

        await service.generate_monthly_invoices(2025, 3, initiated_by_id=admin_id)

        assert {i.created_by_id for i in await _invoices(db_session)} == {admin_id}
        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "GENERATE_INVOICES"))
        [entry] = result.scalars().all()
        assert entry.user_id == admin_id
        assert entry.entity_identifier == "monthly:2025-03-01"
        assert entry.new_values["created"] == 2

    async def test_invalid_month_rejected_before_any_work(self, db_session: AsyncSession):
        service = self._service(db_session)
        with pytest.raises(ValidationError):
            await service.generate_monthly_invoices(2025, 13)
        count = await db_session.execute(select(func.count()).select_from(AuditLog))
        assert count.scalar() == 0

    async def test_failed_student_does_not_abort_run(
        self, db_session: AsyncSession, factory, monkeypatch
    ):
        branch = await factory.branch()
        good = await factory.course(branch, total_amount="1000")
        broken = await factory.course(branch, total_amount="500")
        first = await factory.student(branch)
        second = await factory.student(branch)
        await factory.enroll(first, good)
        await factory.enroll(second, broken)
        broken_id = broken.id

        original = invoice_service_module.fee_structure_amount

        def flaky_amount(fee_structure):
            if fee_structure.course_id == broken_id:
                raise ArithmeticError("bad fee structure")
            return original(fee_structure)

        monkeypatch.setattr(invoice_service_module, "fee_structure_amount", flaky_amount)
        service = self._service(db_session)

        result = await service.generate_monthly_invoices(2025, 3)

        assert result.created == 1
        assert result.skipped == 1
        [skipped] = result.details.skipped
        assert skipped.reason == SkipReason.ERROR
        assert skipped.course_id == broken_id
        assert "bad fee structure" in skipped.error

    async def test_no_courses_creates_nothing(self, db_session: AsyncSession):
        result = await self._service(db_session).generate_monthly_invoices(2025, 3)
        assert result.created == 0
        assert result.skipped == 0
        assert result.notifications_sent == 0


class TestDuplicateProtection:
    """The unique indexes, not the pre-insert scan, prevent double billing."""

    async def _setup(self, factory) -> dict:
        branch = await factory.branch()
        course = await factory.course(branch, total_amount="1000")
        students = [await factory.student(branch) for _ in range(2)]
        for student in students:
            await factory.enroll(student, course)
        return {"branch": branch, "course": course, "students": students}

    async def test_concurrent_consolidated_run_with_stale_scan(
        self, db_session: AsyncSession, factory, monkeypatch
    ):
        data = await self._setup(factory)
        first_run = InvoiceGenerationService(db_session, notifier=NullInvoiceNotifier())
        await first_run.generate_monthly_invoices(2025, 3)

        # A second run that scanned before the first one committed sees no invoices
        latecomer = await factory.student(data["branch"])
        await factory.enroll(latecomer, data["course"])
        latecomer_id = latecomer.id
        second_run = InvoiceGenerationService(db_session, notifier=NullInvoiceNotifier())

        async def stale_scan(start, branch_id=None):
            return set()

        monkeypatch.setattr(second_run.scanner, "consolidated_invoiced_students", stale_scan)

        result = await second_run.generate_monthly_invoices(2025, 3)

        assert result.created == 1
        assert result.details.created[0].student_id == latecomer_id
        assert result.skipped == 2
        assert {s.reason for s in result.details.skipped} == {SkipReason.DUPLICATE}
        assert len(await _invoices(db_session)) == 3

    async def test_concurrent_per_course_run_with_stale_scan(
        self, db_session: AsyncSession, factory, monkeypatch
    ):
        await self._setup(factory)
        first_run = InvoiceGenerationService(db_session, notifier=NullInvoiceNotifier())
        await first_run.generate_monthly_invoices(2025, 3, consolidate=False)

        second_run = InvoiceGenerationService(db_session, notifier=NullInvoiceNotifier())

        async def stale_scan(course_id, period_year, period_month):
            return set()

        monkeypatch.setattr(second_run.scanner, "course_invoiced_students", stale_scan)

        result = await second_run.generate_monthly_invoices(2025, 3, consolidate=False)

        assert result.created == 0
        assert result.skipped == 2
        assert {s.reason for s in result.details.skipped} == {SkipReason.DUPLICATE}
        assert len(await _invoices(db_session)) == 2

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.audit.models import AuditLog
from school_billing.core.audit.service import AuditAction, AuditService
from school_billing.core.exceptions import DuplicateError, NotFoundError, ValidationError


class TestBillingErrors:
    def test_not_found(self):
        error = NotFoundError("Invoice", 42)
        assert error.status_code == 404
        assert error.message == "Invoice with id=42 not found"
        assert NotFoundError("Invoice").message == "Invoice not found"

    def test_validation_carries_field(self):
        error = ValidationError("Month must be between 1 and 12", field="month")
        assert error.status_code == 422
        assert error.details == {"field": "month"}

    def test_duplicate(self):
        error = DuplicateError("CourseEnrollment", "student_id", 7)
        assert error.status_code == 409
        assert error.message == "CourseEnrollment with student_id=7 already exists"


class TestAuditLog:
    async def test_entry_gets_database_timestamp(self, db_session: AsyncSession):
        await AuditService(db_session).log(
            action=AuditAction.GENERATE_INVOICES,
            entity_type="InvoicePeriod",
            entity_id=20250301,
            entity_identifier="monthly:2025-03-01",
        )
        await db_session.commit()

        entry = (await db_session.execute(select(AuditLog))).scalar_one()
        assert entry.action == "GENERATE_INVOICES"
        assert entry.created_at is not None

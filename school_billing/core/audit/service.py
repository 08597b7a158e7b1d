from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from school_billing.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    ENROLL_STUDENT = "ENROLL_STUDENT"
    GENERATE_INVOICES = "GENERATE_INVOICES"
    APPLY_CREDIT = "APPLY_CREDIT"


class AuditService:
    """Service for creating audit logs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry (flushed, not committed)."""
        audit_log = AuditLog(
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

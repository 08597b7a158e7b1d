"""Audit trail of billing actions."""

from datetime import datetime

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from school_billing.core.database.base import Base, BigIntPK, created_at_column


class AuditLog(Base):
    """
    One audited action: a generation run, a credit application or an enrollment.

    Generation runs are keyed on the period (``entity_type="InvoicePeriod"``,
    ``entity_id=YYYYMMDD``, ``entity_identifier="<frequency>:<period start>"``).
    Rows are append-only, so there is no ``updated_at``.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    user_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    entity_identifier: Mapped[str | None] = mapped_column(String(200), nullable=True)

    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = created_at_column(index=True)

"""Notice model (in-app announcements and personal notifications)."""

from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from school_billing.core.database.base import BaseModel, BigIntPK


class NoticeType(StrEnum):
    GENERAL = "general"
    FEE_REMINDER = "fee_reminder"


class NoticePriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NoticeAudience(StrEnum):
    ALL = "all"
    STUDENTS = "students"
    STAFF = "staff"


class Notice(BaseModel):
    """In-app notice. ``recipient_user_id`` set means a personal notice for one user."""

    __tablename__ = "notices"

    branch_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    notice_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=NoticeType.GENERAL.value, index=True
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=NoticePriority.MEDIUM.value
    )
    target_audience: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NoticeAudience.ALL.value
    )
    recipient_user_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

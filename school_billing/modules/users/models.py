from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from school_billing.core.database.base import BaseModel, BigIntPK


class UserRole(StrEnum):
    """User roles in the system."""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    BRANCH_ADMIN = "BranchAdmin"
    ACCOUNTANT = "Accountant"
    STUDENT = "Student"


class User(BaseModel):
    """
    System user.

    Staff users trigger billing runs (recorded as ``created_by_id``); student users
    receive the in-app invoice notices. Authentication lives in the host application.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    branch_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("branches.id"), nullable=True, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

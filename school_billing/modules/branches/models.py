"""Branch model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from school_billing.core.database.base import BaseModel


class Branch(BaseModel):
    """School branch (campus). Courses, students and invoices are scoped to a branch."""

    __tablename__ = "branches"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

"""Declarative base and shared column types for the billing schema."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def created_at_column(index: bool = False) -> Mapped[datetime]:
    """Timestamp set by the database on insert."""
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=index,
    )


class Base(DeclarativeBase):
    """Registry for every billing table (alembic reads ``Base.metadata``)."""


class BaseModel(Base):
    """Surrogate ``id`` plus ``created_at``/``updated_at`` for billing entities."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

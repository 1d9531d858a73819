"""
Module: oa_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the integer primary key convention, the type annotation map
    for consistent column types, and mixins for timestamps and soft delete.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  This module MUST NOT import
    from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Integer autoincrement primary keys on every table; ids appear in URLs
      and business-refs (``leave:17``).
    - datetime columns are DateTime(timezone=True).
    - dict columns are JSON.

Failure modes:
    - IntegrityError on duplicate unique keys; services translate the
      interesting ones into typed errors before flush where they can.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import JSON, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is an integer autoincrement primary key.
        - datetime maps to DateTime(timezone=True).
        - dict maps to JSON (portable between SQLite and PostgreSQL).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        dict: JSON,
    }

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


class TimestampedBase(Base):
    """
    Abstract base with row timestamps.

    created_at is set on INSERT; updated_at is refreshed on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SoftDeleteMixin:
    """Nullable deleted_at marker; soft-deleted rows are invisible to reads."""

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

"""
Module: oa_kernel.models.organization
Responsibility: ORM persistence for the organisation directory the
    participant resolver reads: users, roles, role membership and the
    department tree with its heads.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Role codes are unique; a user holds a role at most once.
    - Departments form a tree through parent_id (no cycles are created by
      the kernel; the resolver still guards against them).
"""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from oa_kernel.db.base import SoftDeleteMixin, TimestampedBase


class Department(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id"), nullable=True,
    )
    head_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sort: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Department {self.id} {self.name!r} parent={self.parent_id}>"


class User(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "users"

    __table_args__ = (
        Index("ix_users_department", "department_id"),
    )

    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    real_name: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.username!r} active={self.is_active}>"


class Role(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "roles"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Role {self.id} {self.code!r}>"


class UserRole(TimestampedBase):
    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
        Index("ix_user_roles_role", "role_id"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id"), nullable=False)

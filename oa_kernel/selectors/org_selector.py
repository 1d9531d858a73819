"""
Module: oa_kernel.selectors.org_selector
Responsibility: SQL-backed OrgDirectory over users, roles and departments.
Architecture position: Kernel > Selectors.  Read-only.
"""

from sqlalchemy import select

from oa_kernel.models.organization import Department, Role, User, UserRole
from oa_kernel.selectors.base import BaseSelector

# Guards against a corrupted parent chain looping forever.
MAX_DEPARTMENT_DEPTH = 64


class SqlOrgDirectory(BaseSelector):
    """OrgDirectory implementation reading the organisation tables."""

    def is_active_user(self, user_id: int) -> bool:
        return self.session.execute(
            select(User.id).where(
                User.id == user_id,
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
        ).scalar_one_or_none() is not None

    def active_users_with_role(self, role_id: int) -> tuple[int, ...]:
        rows = self.session.execute(
            select(User.id)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                UserRole.role_id == role_id,
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
            .order_by(User.id)
        ).scalars().all()
        return tuple(rows)

    def department_chain(self, user_id: int) -> tuple[int, ...]:
        department_id = self.session.execute(
            select(User.department_id).where(User.id == user_id)
        ).scalar_one_or_none()

        chain: list[int] = []
        while department_id is not None and department_id not in chain:
            if len(chain) >= MAX_DEPARTMENT_DEPTH:
                break
            chain.append(department_id)
            department_id = self.session.execute(
                select(Department.parent_id).where(Department.id == department_id)
            ).scalar_one_or_none()
        return tuple(chain)

    def department_head(self, department_id: int) -> int | None:
        return self.session.execute(
            select(Department.head_user_id).where(
                Department.id == department_id,
                Department.deleted_at.is_(None),
            )
        ).scalar_one_or_none()

    def has_role(self, user_id: int, role_code: str) -> bool:
        """True when an active user holds the live role ``role_code``."""
        return self.session.execute(
            select(UserRole.id)
            .join(User, User.id == UserRole.user_id)
            .join(Role, Role.id == UserRole.role_id)
            .where(
                UserRole.user_id == user_id,
                Role.code == role_code,
                Role.deleted_at.is_(None),
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
            .limit(1)
        ).scalar_one_or_none() is not None

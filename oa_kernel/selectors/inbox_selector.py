"""
Module: oa_kernel.selectors.inbox_selector
Responsibility: Read-only listings of a user's todos and notifications.
Architecture position: Kernel > Selectors.  Read-only.
"""

from __future__ import annotations

from sqlalchemy import func, select

from oa_kernel.domain.dtos import Page, PageRequest
from oa_kernel.domain.inbox import NotificationInfo, TodoInfo
from oa_kernel.exceptions import InvalidInputError
from oa_kernel.models.inbox import Notification, NotificationStatus, Todo, TodoStatus
from oa_kernel.selectors.base import BaseSelector


class TodoSelector(BaseSelector):

    def list(
        self,
        user_id: int,
        status: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Page[TodoInfo]:
        window = PageRequest(page, page_size)
        stmt = select(Todo).where(Todo.user_id == user_id)
        if status:
            try:
                stmt = stmt.where(Todo.status == TodoStatus(status).value)
            except ValueError:
                raise InvalidInputError(
                    f"unknown todo status {status!r}", field="status",
                ) from None
        stmt = stmt.order_by(Todo.id.desc())
        return Page(
            data=tuple(t.to_dto() for t in self._page_rows(stmt, window)),
            total=self._count(stmt),
        )


class NotificationSelector(BaseSelector):

    def list(
        self,
        user_id: int,
        page: int = 1,
        page_size: int = 10,
    ) -> Page[NotificationInfo]:
        window = PageRequest(page, page_size)
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.id.desc())
        )
        return Page(
            data=tuple(n.to_dto() for n in self._page_rows(stmt, window)),
            total=self._count(stmt),
        )

    def unread_count(self, user_id: int) -> int:
        return self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.status == NotificationStatus.UNREAD.value,
            )
        ).scalar_one()

"""
InboxService -- writes to per-user todos and notifications.

Responsibility:
    Materialises todos and notifications (called by the intent relay's
    sinks) and applies the user's own inbox actions: completing a todo,
    marking notifications read.

Architecture position:
    Kernel > Services.  Flush-only; the relay or the HTTP edge commits.

Invariants enforced:
    - Creation is idempotent: one todo per (user, node record), one
      notification per intent.  Redelivered intents change nothing.
    - Users only act on their own items; anything else reads as not found.
"""

from __future__ import annotations

from sqlalchemy import select, update

from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.domain.inbox import NotificationInfo, TodoInfo
from oa_kernel.exceptions import NotificationNotFoundError, TodoNotFoundError
from oa_kernel.logging_config import get_logger
from oa_kernel.models.inbox import (
    InboxItemType,
    Notification,
    NotificationStatus,
    Todo,
    TodoStatus,
)
from oa_kernel.services.base import BaseService

logger = get_logger("services.inbox")


class InboxService(BaseService):

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # Todos

    def create_todo(
        self,
        user_id: int,
        title: str,
        content: str = "",
        instance_id: int | None = None,
        node_record_id: int | None = None,
    ) -> TodoInfo:
        if node_record_id is not None:
            existing = self.session.execute(
                select(Todo).where(
                    Todo.user_id == user_id,
                    Todo.node_record_id == node_record_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                return existing.to_dto()

        todo = Todo(
            user_id=user_id,
            title=title,
            content=content,
            type=InboxItemType.APPROVAL.value,
            status=TodoStatus.OPEN.value,
            instance_id=instance_id,
            node_record_id=node_record_id,
            created_at=self._clock.now(),
        )
        self.session.add(todo)
        self.session.flush()
        logger.info(
            "todo_created",
            extra={"todo_id": todo.id, "user_id": user_id, "instance_id": instance_id},
        )
        return todo.to_dto()

    def close_todos(
        self,
        user_id: int,
        instance_id: int,
        status: TodoStatus,
        node_record_id: int | None = None,
    ) -> int:
        """Close the user's open todos for an instance; returns how many."""
        stmt = (
            update(Todo)
            .where(
                Todo.user_id == user_id,
                Todo.instance_id == instance_id,
                Todo.status == TodoStatus.OPEN.value,
            )
            .values(status=status.value, completed_at=self._clock.now())
            .execution_options(synchronize_session=False)
        )
        if node_record_id is not None:
            stmt = stmt.where(Todo.node_record_id == node_record_id)
        closed = self.session.execute(stmt).rowcount
        logger.debug(
            "todos_closed",
            extra={
                "user_id": user_id,
                "instance_id": instance_id,
                "status": status.value,
                "count": closed,
            },
        )
        return closed

    def complete_todo(self, todo_id: int, user_id: int) -> TodoInfo:
        """Mark one of the user's todos completed.  Already-closed todos are
        returned unchanged.

        Raises:
            TodoNotFoundError: no such todo for this user.
        """
        todo = self.session.execute(
            select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id)
        ).scalar_one_or_none()
        if todo is None:
            raise TodoNotFoundError(todo_id)
        if todo.status == TodoStatus.OPEN.value:
            todo.status = TodoStatus.COMPLETED.value
            todo.completed_at = self._clock.now()
            self.session.flush()
        return todo.to_dto()

    # Notifications

    def create_notification(
        self,
        user_id: int,
        title: str,
        content: str = "",
        instance_id: int | None = None,
        intent_id: int | None = None,
    ) -> NotificationInfo:
        if intent_id is not None:
            existing = self.session.execute(
                select(Notification).where(Notification.intent_id == intent_id)
            ).scalar_one_or_none()
            if existing is not None:
                return existing.to_dto()

        note = Notification(
            user_id=user_id,
            title=title,
            content=content,
            type=InboxItemType.APPROVAL.value,
            status=NotificationStatus.UNREAD.value,
            instance_id=instance_id,
            intent_id=intent_id,
            created_at=self._clock.now(),
        )
        self.session.add(note)
        self.session.flush()
        logger.info(
            "notification_created",
            extra={"notification_id": note.id, "user_id": user_id},
        )
        return note.to_dto()

    def mark_read(self, notification_id: int, user_id: int) -> NotificationInfo:
        note = self.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        ).scalar_one_or_none()
        if note is None:
            raise NotificationNotFoundError(notification_id)
        if note.status != NotificationStatus.READ.value:
            note.status = NotificationStatus.READ.value
            note.read_at = self._clock.now()
            self.session.flush()
        return note.to_dto()

    def mark_all_read(self, user_id: int) -> int:
        count = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.status == NotificationStatus.UNREAD.value,
            )
            .values(status=NotificationStatus.READ.value, read_at=self._clock.now())
            .execution_options(synchronize_session=False)
        ).rowcount
        logger.info("notifications_marked_read", extra={"user_id": user_id, "count": count})
        return count

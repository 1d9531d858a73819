"""
Module: oa_kernel.models.inbox
Responsibility: ORM persistence for per-user todos and notifications, the
    rows the intent relay materialises from approval intents.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain value objects only.

Invariants enforced:
    - At most one open approval todo per (user, node record); the relay
      relies on this to make redelivery of an intent harmless.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from oa_kernel.db.base import Base
from oa_kernel.domain.inbox import NotificationInfo, TodoInfo


class TodoStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"


class InboxItemType(str, Enum):
    APPROVAL = "approval"
    SYSTEM = "system"


class Todo(Base):
    __tablename__ = "todos"

    __table_args__ = (
        Index("ix_todos_user_status", "user_id", "status"),
        Index(
            "uq_todos_node_record",
            "user_id", "node_record_id",
            unique=True,
        ),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), default=InboxItemType.APPROVAL.value, nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=TodoStatus.OPEN.value, nullable=False,
    )
    instance_id: Mapped[int | None] = mapped_column(
        ForeignKey("approval_records.id"), nullable=True,
    )
    node_record_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Todo {self.id} user={self.user_id} status={self.status}>"

    def to_dto(self) -> TodoInfo:
        return TodoInfo(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            content=self.content,
            type=self.type,
            status=self.status,
            instance_id=self.instance_id,
            node_record_id=self.node_record_id,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )


class Notification(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_status", "user_id", "status"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), default=InboxItemType.APPROVAL.value, nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=NotificationStatus.UNREAD.value, nullable=False,
    )
    instance_id: Mapped[int | None] = mapped_column(
        ForeignKey("approval_records.id"), nullable=True,
    )
    intent_id: Mapped[int | None] = mapped_column(Integer, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification {self.id} user={self.user_id} status={self.status}>"

    def to_dto(self) -> NotificationInfo:
        return NotificationInfo(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            content=self.content,
            type=self.type,
            status=self.status,
            instance_id=self.instance_id,
            created_at=self.created_at,
            read_at=self.read_at,
        )

"""Per-user inbox snapshots: todos and notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class TodoInfo:
    id: int
    user_id: int
    title: str
    content: str
    type: str
    status: str
    instance_id: int | None
    node_record_id: int | None
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class NotificationInfo:
    id: int
    user_id: int
    title: str
    content: str
    type: str
    status: str
    instance_id: int | None
    created_at: datetime | None = None
    read_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

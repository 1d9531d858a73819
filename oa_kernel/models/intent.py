"""
Module: oa_kernel.models.intent
Responsibility: ORM persistence for the approval intent outbox.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Intents are inserted in the same transaction as the state change that
      caused them, so a rolled-back decision leaves no intent behind.
    - delivered_at is set once; undelivered rows are retried in id order.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from oa_kernel.db.base import Base
from oa_kernel.domain.intents import ApprovalIntent, IntentKind


class ApprovalIntentModel(Base):
    __tablename__ = "approval_intents"

    __table_args__ = (
        Index("ix_approval_intents_undelivered", "delivered_at", "id"),
    )

    instance_id: Mapped[int] = mapped_column(
        ForeignKey("approval_records.id"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    payload: Mapped[dict] = mapped_column(default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalIntent {self.id} {self.kind} instance={self.instance_id} "
            f"recipient={self.recipient_id}>"
        )

    def to_dto(self) -> ApprovalIntent:
        return ApprovalIntent(
            id=self.id,
            kind=IntentKind(self.kind),
            instance_id=self.instance_id,
            recipient_id=self.recipient_id,
            title=self.title,
            payload=dict(self.payload or {}),
        )

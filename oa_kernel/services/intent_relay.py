"""
IntentRelay -- after-commit delivery of approval intents.

Responsibility:
    Reads undelivered rows from the ``approval_intents`` outbox in id order
    and hands each to every configured sink.  A delivered row gets
    ``delivered_at``; a failed one keeps ``delivered_at`` NULL, has
    ``attempts`` incremented and ``last_error`` recorded, and is retried by
    the next run.

Architecture position:
    Kernel > Services.  Owns its own short transactions; runs only after
    the engine has committed, so nothing is delivered for a rolled-back
    decision.

Invariants enforced:
    - At-least-once, in outbox order: a run stops at the first failure so
      later intents never overtake an earlier one while it is retried.
    - After ``max_attempts`` failures an intent is abandoned: it is logged
      at ERROR as ``intent_abandoned``, stays undelivered in the outbox, and
      later intents are delivered past it.  Ordering holds only among
      intents that are still deliverable.
    - Concurrent runs serialize on the outbox rows (``FOR UPDATE``), so a
      row is delivered by one run at a time.
    - Sinks are idempotent, which makes redelivery harmless.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.domain.intents import APPLICANT_INTENT_KINDS, ApprovalIntent, IntentKind
from oa_kernel.logging_config import get_logger
from oa_kernel.models.inbox import TodoStatus
from oa_kernel.models.intent import ApprovalIntentModel
from oa_kernel.services.inbox_service import InboxService

logger = get_logger("services.intent_relay")

DEFAULT_MAX_ATTEMPTS = 5


class IntentSink(Protocol):
    def deliver(self, session: Session, intent: ApprovalIntent) -> None:
        ...


_NOTIFICATION_TEXT = {
    IntentKind.SUBMITTED: "Your request was submitted",
    IntentKind.APPROVED: "Your request was approved",
    IntentKind.REJECTED: "Your request was rejected",
    IntentKind.CANCELLED: "Your request was cancelled",
}

_WITHDRAW_REASONS = {
    "completed": TodoStatus.COMPLETED,
    "superseded": TodoStatus.WITHDRAWN,
    "transferred": TodoStatus.WITHDRAWN,
    "cancelled": TodoStatus.WITHDRAWN,
}


class TodoSink:
    """Keeps approvers' todos in step with their node records."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def deliver(self, session: Session, intent: ApprovalIntent) -> None:
        inbox = InboxService(session, self._clock)
        if intent.kind == IntentKind.TODO_ASSIGNED:
            inbox.create_todo(
                user_id=intent.recipient_id,
                title=intent.title,
                content="Approval required",
                instance_id=intent.instance_id,
                node_record_id=intent.payload.get("node_record_id"),
            )
        elif intent.kind == IntentKind.TODO_WITHDRAWN:
            status = _WITHDRAW_REASONS.get(
                intent.payload.get("reason", ""), TodoStatus.WITHDRAWN,
            )
            inbox.close_todos(
                user_id=intent.recipient_id,
                instance_id=intent.instance_id,
                status=status,
                node_record_id=intent.payload.get("node_record_id"),
            )


class NotificationSink:
    """Tells the applicant what happened to their request."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def deliver(self, session: Session, intent: ApprovalIntent) -> None:
        if intent.kind not in APPLICANT_INTENT_KINDS:
            return
        InboxService(session, self._clock).create_notification(
            user_id=intent.recipient_id,
            title=intent.title,
            content=_NOTIFICATION_TEXT[intent.kind],
            instance_id=intent.instance_id,
            intent_id=intent.id,
        )


class MemoryIntentSink:
    """Collects delivered intents in memory."""

    def __init__(self):
        self.delivered: list[ApprovalIntent] = []

    def deliver(self, session: Session, intent: ApprovalIntent) -> None:
        self.delivered.append(intent)

    def kinds(self, instance_id: int | None = None) -> list[IntentKind]:
        return [
            i.kind for i in self.delivered
            if instance_id is None or i.instance_id == instance_id
        ]

    def clear(self) -> None:
        self.delivered.clear()


@dataclass(frozen=True)
class RelayReport:
    delivered: int
    failed: int
    remaining: int


class IntentRelay:
    """Delivers outbox rows to sinks after commit."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sinks: Iterable[IntentSink] | None = None,
        clock: Clock | None = None,
        batch_size: int = 100,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._sinks = (
            tuple(sinks) if sinks is not None
            else (TodoSink(self._clock), NotificationSink(self._clock))
        )
        self._batch_size = batch_size
        self._max_attempts = max_attempts

    @property
    def sinks(self) -> tuple[IntentSink, ...]:
        return self._sinks

    def deliver_pending(self) -> RelayReport:
        """Deliver undelivered intents in id order until done or one fails."""
        delivered = failed = 0
        session = self._session_factory()
        try:
            rows = session.execute(
                select(ApprovalIntentModel)
                .where(
                    ApprovalIntentModel.delivered_at.is_(None),
                    ApprovalIntentModel.attempts < self._max_attempts,
                )
                .order_by(ApprovalIntentModel.id)
                .limit(self._batch_size)
                .with_for_update()
            ).scalars().all()

            for row in rows:
                intent = row.to_dto()
                savepoint = session.begin_nested()
                try:
                    for sink in self._sinks:
                        sink.deliver(session, intent)
                    savepoint.commit()
                except Exception as exc:
                    savepoint.rollback()
                    row.attempts += 1
                    row.last_error = f"{type(exc).__name__}: {exc}"
                    failed += 1
                    logger.warning(
                        "intent_delivery_failed",
                        extra={
                            "intent_id": row.id,
                            "kind": row.kind,
                            "attempts": row.attempts,
                            "error": row.last_error,
                        },
                    )
                    if row.attempts >= self._max_attempts:
                        logger.error(
                            "intent_abandoned",
                            extra={
                                "intent_id": row.id,
                                "kind": row.kind,
                                "instance_id": row.instance_id,
                                "attempts": row.attempts,
                            },
                        )
                    break
                row.delivered_at = self._clock.now()
                delivered += 1

            session.commit()
            remaining = len(rows) - delivered
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if delivered or failed:
            logger.info(
                "intents_relayed",
                extra={"delivered": delivered, "failed": failed},
            )
        return RelayReport(delivered=delivered, failed=failed, remaining=remaining)

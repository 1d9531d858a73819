"""
AuditorService -- the hash-chained audit trail of approvals and catalog edits.

Every instance transition, node decision, transfer, refused decision and
catalog change appends one AuditEvent.  Events form a single chain in
``seq`` order: each stores the previous event's hash and its own hash over
``entity_type|entity_id|action|payload_hash|prev_hash``.  Rewriting any
stored event therefore breaks every link after it, which
``validate_chain`` detects.

The ``seq`` counter row is locked before the chain head is read, so two
writers can never link to the same predecessor.  Events are append-only;
the ORM listeners on AuditEvent refuse updates and deletes.  The service
flushes and never commits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.exceptions import AuditChainBrokenError
from oa_kernel.logging_config import get_logger
from oa_kernel.models.audit_event import AuditAction, AuditEvent
from oa_kernel.services.sequence_service import SequenceService
from oa_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

INSTANCE_ENTITY = "ApprovalInstance"

_FINISH_ACTIONS = {
    "approved": AuditAction.INSTANCE_APPROVED,
    "rejected": AuditAction.INSTANCE_REJECTED,
    "cancelled": AuditAction.INSTANCE_CANCELLED,
}


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: int | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """One entity's audit events, oldest first."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)


def _link_hash(event: AuditEvent) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        action=event.action,
        payload_hash=event.payload_hash,
        prev_hash=event.prev_hash,
    )


class AuditorService:

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _chain_head(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _append(
        self,
        entity_type: str,
        entity_id: int | str,
        action: AuditAction,
        actor_id: int | None,
        payload: dict[str, Any],
    ) -> AuditEvent:
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload,
            payload_hash=hash_payload(payload),
            prev_hash=self._chain_head(),
        )
        event.hash = _link_hash(event)
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": event.entity_id,
                "action": action.value,
                "seq": seq,
            },
        )
        return event

    # Instance lifecycle

    def record_submitted(
        self,
        instance_id: int,
        flow_id: int,
        applicant_id: int,
        business_ref: str | None,
        approver_ids: tuple[int, ...],
    ) -> AuditEvent:
        return self._append(
            INSTANCE_ENTITY, instance_id, AuditAction.INSTANCE_SUBMITTED, applicant_id,
            {
                "flow_id": flow_id,
                "business_ref": business_ref,
                "approver_ids": list(approver_ids),
            },
        )

    def record_node_decision(
        self,
        instance_id: int,
        node_id: int,
        record_id: int,
        approver_id: int,
        approved: bool,
        comment: str,
        superseded_record_ids: tuple[int, ...] = (),
    ) -> AuditEvent:
        action = AuditAction.NODE_APPROVED if approved else AuditAction.NODE_REJECTED
        return self._append(
            INSTANCE_ENTITY, instance_id, action, approver_id,
            {
                "node_id": node_id,
                "record_id": record_id,
                "comment": comment,
                "superseded_record_ids": list(superseded_record_ids),
            },
        )

    def record_node_advanced(
        self,
        instance_id: int,
        from_node_id: int,
        to_node_id: int,
        approver_ids: tuple[int, ...],
        actor_id: int,
    ) -> AuditEvent:
        return self._append(
            INSTANCE_ENTITY, instance_id, AuditAction.NODE_ADVANCED, actor_id,
            {
                "from_node_id": from_node_id,
                "to_node_id": to_node_id,
                "approver_ids": list(approver_ids),
            },
        )

    def record_finished(
        self,
        instance_id: int,
        status: str,
        actor_id: int,
        business_ref: str | None,
    ) -> AuditEvent:
        return self._append(
            INSTANCE_ENTITY, instance_id, _FINISH_ACTIONS[status], actor_id,
            {"status": status, "business_ref": business_ref},
        )

    def record_transfer(
        self,
        instance_id: int,
        node_id: int,
        from_approver_id: int,
        to_approver_id: int,
        comment: str,
    ) -> AuditEvent:
        return self._append(
            INSTANCE_ENTITY, instance_id, AuditAction.TASK_TRANSFERRED, from_approver_id,
            {"node_id": node_id, "to_approver_id": to_approver_id, "comment": comment},
        )

    def record_decision_failed(
        self,
        instance_id: int,
        actor_id: int | None,
        operation: str,
        error_code: str,
        message: str,
    ) -> AuditEvent:
        """Record a refused or failed decision; written in its own transaction."""
        return self._append(
            INSTANCE_ENTITY, instance_id, AuditAction.DECISION_FAILED, actor_id,
            {"operation": operation, "error_code": error_code, "message": message},
        )

    # Catalog

    def record_catalog_change(
        self,
        entity_type: str,
        entity_id: int,
        change: str,
        actor_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self._append(
            entity_type, entity_id, AuditAction.CATALOG_CHANGED, actor_id,
            {"change": change, **(details or {})},
        )

    # Verification and queries

    def validate_chain(self) -> bool:
        """
        Walk the whole chain in ``seq`` order and recompute every link.

        Raises:
            AuditChainBrokenError: at the first event whose payload digest,
                own hash or predecessor link does not match.
        """
        previous: str | None = None
        count = 0
        for event in self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars():
            count += 1
            if event.prev_hash != previous:
                self._broken(event.seq, previous or "None", event.prev_hash or "None")
            if hash_payload(event.payload or {}) != event.payload_hash:
                self._broken(event.seq, hash_payload(event.payload or {}), event.payload_hash)
            expected = _link_hash(event)
            if event.hash != expected:
                self._broken(event.seq, expected, event.hash)
            previous = event.hash

        logger.info("audit_chain_validated", extra={"event_count": count})
        return True

    @staticmethod
    def _broken(seq: int, expected: str, actual: str) -> None:
        logger.critical("audit_chain_broken", extra={"seq": seq})
        raise AuditChainBrokenError(seq, expected, actual)

    def get_trace(self, entity_type: str, entity_id: int | str) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=AuditAction(e.action),
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

"""
Module: oa_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every submission, decision, node
    advance, terminal transition, transfer, catalog change and failed
    decision produces an AuditEvent.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from oa_kernel.db.base import Base
from oa_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Instance lifecycle
    INSTANCE_SUBMITTED = "instance_submitted"
    NODE_APPROVED = "node_approved"
    NODE_REJECTED = "node_rejected"
    NODE_ADVANCED = "node_advanced"
    INSTANCE_APPROVED = "instance_approved"
    INSTANCE_REJECTED = "instance_rejected"
    INSTANCE_CANCELLED = "instance_cancelled"
    TASK_TRANSFERRED = "task_transferred"

    # Failures
    DECISION_FAILED = "decision_failed"

    # Catalog administration
    CATALOG_CHANGED = "catalog_changed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "ApprovalInstance", "ApprovalFlow", "ApprovalType"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    # Null for system actions
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=target.seq,
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=target.seq,
        reason="Audit events are append-only -- cannot delete",
    )

"""
Module: oa_kernel.models.approval
Responsibility: ORM persistence for the approval catalog (types, flows,
    nodes) and for approval instances and their per-approver node records.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Node order is >= 1 and unique among a flow's live nodes (check
      constraint + partial unique index).
    - Exactly one node record per (instance, node, approver).
    - A business-ref is bound to at most one live instance (partial unique
      index on business tag/row among pending and running instances).
    - Closed node records and terminal instances are frozen: ORM listeners
      reject UPDATE and DELETE.

Failure modes:
    - IntegrityError on duplicate node order, duplicate approver record or
      a second live instance for the same business-ref.
    - ImmutabilityViolationError on mutation of frozen rows.

Audit relevance:
    Node records reconstruct who decided what and when.  Instances are
    never hard-deleted.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oa_kernel.db.base import Base, SoftDeleteMixin, TimestampedBase
from oa_kernel.domain.approval import (
    ApprovalTypeInfo,
    BusinessRef,
    FlowInfo,
    InstanceSnapshot,
    InstanceStatus,
    NodeInfo,
    NodeKind,
    NodeRecordInfo,
    NodeRecordStatus,
    TERMINAL_INSTANCE_STATUSES,
)
from oa_kernel.exceptions import ImmutabilityViolationError

_LIVE_ONLY = text("deleted_at IS NULL")
_LIVE_INSTANCE = text("status IN ('pending', 'running') AND business_tag IS NOT NULL")


class ApprovalTypeModel(TimestampedBase, SoftDeleteMixin):
    """Coarse classifier for a family of flows ("leave", "disposal", ...)."""

    __tablename__ = "approval_types"

    __table_args__ = (
        Index(
            "uq_approval_types_code_live",
            "code",
            unique=True,
            postgresql_where=_LIVE_ONLY,
            sqlite_where=_LIVE_ONLY,
        ),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalType {self.code} active={self.is_active}>"

    def to_dto(self) -> ApprovalTypeInfo:
        return ApprovalTypeInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            sort=self.sort,
            is_active=self.is_active,
        )


class ApprovalFlowModel(TimestampedBase, SoftDeleteMixin):
    """A named sequence of nodes realising one approval policy for a type."""

    __tablename__ = "approval_flows"

    __table_args__ = (
        Index("ix_approval_flows_type", "type_id", "is_active"),
    )

    type_id: Mapped[int] = mapped_column(
        ForeignKey("approval_types.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalFlow {self.id} {self.name!r} active={self.is_active}>"

    def to_dto(self) -> FlowInfo:
        return FlowInfo(
            id=self.id,
            type_id=self.type_id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
        )


class ApprovalNodeModel(TimestampedBase, SoftDeleteMixin):
    """One stage of a flow.

    ``participant_id`` names a user for fixed_person nodes and a role for
    role nodes; department_head nodes leave it empty.
    """

    __tablename__ = "approval_nodes"

    __table_args__ = (
        CheckConstraint("sort >= 1", name="ck_approval_nodes_order_positive"),
        CheckConstraint(
            "kind IN ('fixed_person', 'role', 'department_head')",
            name="ck_approval_nodes_valid_kind",
        ),
        Index(
            "uq_approval_nodes_flow_order_live",
            "flow_id", "sort",
            unique=True,
            postgresql_where=_LIVE_ONLY,
            sqlite_where=_LIVE_ONLY,
        ),
    )

    flow_id: Mapped[int] = mapped_column(
        ForeignKey("approval_flows.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    participant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    order: Mapped[int] = mapped_column("sort", Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalNode {self.id} flow={self.flow_id} order={self.order}>"

    def to_dto(self) -> NodeInfo:
        return NodeInfo(
            id=self.id,
            flow_id=self.flow_id,
            name=self.name,
            kind=NodeKind(self.kind),
            order=self.order,
            participant_id=self.participant_id,
        )


class ApprovalInstanceModel(Base):
    """One request travelling through a flow.

    Contract:
        Written only by the approval engine.  Once terminal, the row is
        frozen.
    """

    __tablename__ = "approval_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_records_valid_status",
        ),
        Index(
            "uq_approval_records_live_business_ref",
            "business_tag", "business_row_id",
            unique=True,
            postgresql_where=_LIVE_INSTANCE,
            sqlite_where=_LIVE_INSTANCE,
        ),
        Index("ix_approval_records_applicant", "applicant_id", "status"),
        Index("ix_approval_records_flow_status", "flow_id", "status"),
    )

    flow_id: Mapped[int] = mapped_column(
        ForeignKey("approval_flows.id"), nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    applicant_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False,
    )
    current_node_id: Mapped[int | None] = mapped_column(
        ForeignKey("approval_nodes.id"), nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=InstanceStatus.RUNNING.value, nullable=False,
    )
    business_tag: Mapped[str | None] = mapped_column(String(50), nullable=True)
    business_row_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancelled_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    records: Mapped[list["ApprovalNodeRecordModel"]] = relationship(
        "ApprovalNodeRecordModel",
        back_populates="instance",
        order_by="ApprovalNodeRecordModel.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalInstance {self.id} status={self.status}>"

    @property
    def business_ref(self) -> BusinessRef | None:
        if self.business_tag is None or self.business_row_id is None:
            return None
        return BusinessRef(self.business_tag, self.business_row_id)

    def to_dto(self) -> InstanceSnapshot:
        return InstanceSnapshot(
            id=self.id,
            flow_id=self.flow_id,
            title=self.title,
            body=self.body,
            applicant_id=self.applicant_id,
            status=InstanceStatus(self.status),
            current_node_id=self.current_node_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            finished_at=self.finished_at,
            business_ref=self.business_ref,
            cancelled_by=self.cancelled_by,
            records=tuple(r.to_dto() for r in self.records),
        )


class ApprovalNodeRecordModel(Base):
    """One approver's task at one node of one instance.

    Contract:
        Created pending; closed exactly once by a compare-and-set UPDATE.
        Never deleted.
    """

    __tablename__ = "approval_node_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'superseded', 'transferred')",
            name="ck_approval_node_records_valid_status",
        ),
        UniqueConstraint(
            "instance_id", "node_id", "approver_id",
            name="uq_approval_node_records_approver",
        ),
        Index("ix_approval_node_records_approver_status", "approver_id", "status"),
    )

    instance_id: Mapped[int] = mapped_column(
        ForeignKey("approval_records.id"), nullable=False,
    )
    node_id: Mapped[int] = mapped_column(
        ForeignKey("approval_nodes.id"), nullable=False,
    )
    approver_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=NodeRecordStatus.PENDING.value, nullable=False,
    )
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    system_closed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    instance: Mapped[ApprovalInstanceModel] = relationship(
        "ApprovalInstanceModel", back_populates="records",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalNodeRecord {self.id} instance={self.instance_id} "
            f"node={self.node_id} approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> NodeRecordInfo:
        return NodeRecordInfo(
            id=self.id,
            instance_id=self.instance_id,
            node_id=self.node_id,
            approver_id=self.approver_id,
            status=NodeRecordStatus(self.status),
            comment=self.comment,
            decided_at=self.decided_at,
            system_closed=self.system_closed,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


def _previous_value(target, attr: str):
    history = inspect(target).attrs[attr].history
    if history.deleted:
        return history.deleted[0]
    return getattr(target, attr)


@event.listens_for(ApprovalNodeRecordModel, "before_update")
def prevent_closed_record_update(mapper, connection, target):
    """Closed node records are final."""
    if _previous_value(target, "status") != NodeRecordStatus.PENDING.value:
        raise ImmutabilityViolationError(
            entity_type="ApprovalNodeRecord",
            entity_id=target.id,
            reason="Decided node records are immutable -- cannot modify",
        )


@event.listens_for(ApprovalNodeRecordModel, "before_delete")
def prevent_record_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalNodeRecord",
        entity_id=target.id,
        reason="Node records are never deleted",
    )


@event.listens_for(ApprovalInstanceModel, "before_update")
def prevent_terminal_instance_update(mapper, connection, target):
    """Terminal instances are absorbing."""
    previous = InstanceStatus(_previous_value(target, "status"))
    if previous in TERMINAL_INSTANCE_STATUSES:
        raise ImmutabilityViolationError(
            entity_type="ApprovalInstance",
            entity_id=target.id,
            reason=f"Instance is {previous.value} -- cannot modify",
        )


@event.listens_for(ApprovalInstanceModel, "before_delete")
def prevent_instance_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalInstance",
        entity_id=target.id,
        reason="Approval instances are never hard-deleted",
    )

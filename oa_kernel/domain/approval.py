"""
Approval domain types (``oa_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval engine: node kinds, the instance
state machine, node record statuses, business references, flow shape
validation, and the read-only snapshots services hand to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Instance lifecycle -- ``INSTANCE_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Node shape -- ``validate_node_specs`` rejects empty sets, orders < 1,
  duplicate orders, and FixedPerson/Role nodes without a participant.
* Record closure -- a record is open iff its status is ``PENDING``;
  every other status is final.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from oa_kernel.exceptions import InvalidInputError, InvalidShapeError


# =========================================================================
# Node kinds
# =========================================================================


class NodeKind(str, Enum):
    """How a node chooses its approvers."""

    FIXED_PERSON = "fixed_person"
    ROLE = "role"
    DEPARTMENT_HEAD = "department_head"


KINDS_REQUIRING_PARTICIPANT: frozenset[NodeKind] = frozenset({
    NodeKind.FIXED_PERSON,
    NodeKind.ROLE,
})


# =========================================================================
# Instance lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Approval instance lifecycle states.

    ``PENDING`` is part of the vocabulary but never persisted: an instance
    is written as ``RUNNING`` together with its first node records.
    """

    PENDING = "pending"
    RUNNING = "running"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({InstanceStatus.RUNNING}),
    InstanceStatus.RUNNING: frozenset({
        InstanceStatus.RUNNING,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})

LIVE_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.PENDING,
    InstanceStatus.RUNNING,
})


def is_valid_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in INSTANCE_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Node records
# =========================================================================


class NodeRecordStatus(str, Enum):
    """Per-approver record status.

    ``SUPERSEDED`` closes records the engine settles on the approver's
    behalf (another approver decided first, or the applicant cancelled).
    ``TRANSFERRED`` closes a record handed to another approver.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    TRANSFERRED = "transferred"


CLOSED_RECORD_STATUSES: frozenset[NodeRecordStatus] = frozenset({
    NodeRecordStatus.APPROVED,
    NodeRecordStatus.REJECTED,
    NodeRecordStatus.SUPERSEDED,
    NodeRecordStatus.TRANSFERRED,
})


class Outcome(str, Enum):
    """Decision an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def record_status(self) -> NodeRecordStatus:
        if self is Outcome.APPROVE:
            return NodeRecordStatus.APPROVED
        return NodeRecordStatus.REJECTED


# =========================================================================
# Business reference
# =========================================================================


@dataclass(frozen=True)
class BusinessRef:
    """Opaque (module tag, row id) pair, rendered as ``tag:row_id``."""

    tag: str
    row_id: int

    def __str__(self) -> str:
        return f"{self.tag}:{self.row_id}"

    @classmethod
    def parse(cls, value: str) -> BusinessRef:
        tag, sep, row = value.rpartition(":")
        if not sep or not tag:
            raise InvalidInputError(
                f"Business reference must look like 'tag:id', got {value!r}",
                field="business_ref",
            )
        try:
            row_id = int(row)
        except ValueError:
            raise InvalidInputError(
                f"Business reference row id must be an integer, got {row!r}",
                field="business_ref",
            ) from None
        if row_id < 1:
            raise InvalidInputError(
                f"Business reference row id must be >= 1, got {row_id}",
                field="business_ref",
            )
        return cls(tag=tag, row_id=row_id)


# =========================================================================
# Flow shape
# =========================================================================


@dataclass(frozen=True)
class NodeSpec:
    """Input for creating or replacing a flow's nodes."""

    name: str
    kind: NodeKind
    order: int
    participant_id: int | None = None


def validate_node_specs(
    nodes: list[NodeSpec] | tuple[NodeSpec, ...],
    flow_id: int | None = None,
) -> tuple[NodeSpec, ...]:
    """Check the flow shape rules and return the nodes sorted by order.

    Raises:
        InvalidShapeError: empty set, order < 1, duplicate order, or a
            FixedPerson/Role node without a participant.
    """
    if not nodes:
        raise InvalidShapeError("a flow needs at least one node", flow_id)

    seen: set[int] = set()
    for spec in nodes:
        if spec.order < 1:
            raise InvalidShapeError(
                f"node {spec.name!r} has order {spec.order}; orders start at 1",
                flow_id,
            )
        if spec.order in seen:
            raise InvalidShapeError(f"duplicate node order {spec.order}", flow_id)
        seen.add(spec.order)
        if spec.kind in KINDS_REQUIRING_PARTICIPANT and spec.participant_id is None:
            raise InvalidShapeError(
                f"{spec.kind.value} node {spec.name!r} needs a participant",
                flow_id,
            )
    return tuple(sorted(nodes, key=lambda s: s.order))


# =========================================================================
# Catalog snapshots
# =========================================================================


@dataclass(frozen=True)
class ApprovalTypeInfo:
    id: int
    code: str
    name: str
    sort: int
    is_active: bool


@dataclass(frozen=True)
class FlowInfo:
    id: int
    type_id: int
    name: str
    description: str
    is_active: bool


@dataclass(frozen=True)
class NodeInfo:
    id: int
    flow_id: int
    name: str
    kind: NodeKind
    order: int
    participant_id: int | None = None


# =========================================================================
# Instance snapshots
# =========================================================================


@dataclass(frozen=True)
class NodeRecordInfo:
    id: int
    instance_id: int
    node_id: int
    approver_id: int
    status: NodeRecordStatus
    comment: str = ""
    decided_at: datetime | None = None
    system_closed: bool = False

    @property
    def is_open(self) -> bool:
        return self.status == NodeRecordStatus.PENDING


@dataclass(frozen=True)
class InstanceSnapshot:
    """Immutable view of an instance and all of its node records."""

    id: int
    flow_id: int
    title: str
    body: str
    applicant_id: int
    status: InstanceStatus
    current_node_id: int | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    business_ref: BusinessRef | None = None
    cancelled_by: int | None = None
    records: tuple[NodeRecordInfo, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    def open_records(self, node_id: int | None = None) -> tuple[NodeRecordInfo, ...]:
        return tuple(
            r for r in self.records
            if r.is_open and (node_id is None or r.node_id == node_id)
        )

    def records_for(self, approver_id: int) -> tuple[NodeRecordInfo, ...]:
        return tuple(r for r in self.records if r.approver_id == approver_id)


# =========================================================================
# Resolution context
# =========================================================================


@dataclass(frozen=True)
class InstanceContext:
    """What the participant resolver knows about a request."""

    applicant_id: int
    department_chain: tuple[int, ...] = ()


class OrgDirectory(Protocol):
    """Organisation lookups the participant resolver depends on."""

    def is_active_user(self, user_id: int) -> bool:
        """True if the user exists and is active."""
        ...

    def active_users_with_role(self, role_id: int) -> tuple[int, ...]:
        """Active holders of a role, ascending by user id."""
        ...

    def department_chain(self, user_id: int) -> tuple[int, ...]:
        """The user's department followed by its ancestors, nearest first."""
        ...

    def department_head(self, department_id: int) -> int | None:
        """Head user id of a department, if one is set."""
        ...

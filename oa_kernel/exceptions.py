"""
Typed Exception Hierarchy for the OA Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval endpoints must tell the caller *why* a decision was refused in a
way that survives message rewording: a lost concurrent approval (retry is
pointless), a terminal instance (the request is over), or a resolver gap
(an administrator must fix role membership).  Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (specific, machine-readable)
  3. A KIND class attribute (the coarse taxonomy the HTTP edge maps onto
     a status code)
  4. Structured DATA attributes (ids, tags) set before ``super().__init__``

Example:
    try:
        engine.approve(instance_id, approver_id, comment="ok")
    except AlreadyDecidedError as e:
        log.info("lost_race", extra={"instance_id": e.instance_id})
    except ResolveFailedError as e:
        page_admin(node_id=e.node_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    OAKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidInputError
    |   +-- InvalidShapeError
    |   +-- UnknownBusinessTagError
    |
    +-- AccessError
    |   +-- UnauthenticatedError
    |   +-- ForbiddenError
    |   +-- NotAssignedError
    |       +-- NoOpenTaskError
    |
    +-- NotFoundError
    |   +-- ApprovalTypeNotFoundError
    |   +-- FlowNotFoundError
    |   +-- NodeNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- BusinessRecordNotFoundError
    |   +-- UserNotFoundError
    |   +-- TodoNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- CatalogError
    |   +-- FlowInactiveError
    |   +-- InUseError
    |   +-- FlowInUseError
    |   +-- DuplicateTypeCodeError
    |
    +-- InstanceStateError
    |   +-- InstanceTerminalError
    |   +-- AlreadyDecidedError
    |   +-- BusinessBusyError
    |   +-- DuplicateApproverError
    |   +-- InvalidInstanceTransitionError
    |
    +-- ResolveFailedError
    |
    +-- DeadlineExceededError
    |
    +-- DispatchError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
KINDS - QUICK REFERENCE
===============================================================================

Kind              | HTTP | Raised by
------------------|------|-----------------------------------------------
INVALID_INPUT     | 400  | bad pagination, unknown business tag, shape
UNAUTHENTICATED   | 401  | missing/invalid token, placeholder identity
FORBIDDEN         | 403  | cancel by someone other than the applicant
NOT_ASSIGNED      | 403  | decide without an open record on current node
NOT_FOUND         | 404  | unknown type, flow, instance, business row
FLOW_INACTIVE     | 404  | submit against deactivated flow (409 on edit)
INSTANCE_TERMINAL | 410  | decide on a finished instance (409 on cancel)
ALREADY_DECIDED   | 409  | compare-and-set lost, replayed decision
BUSINESS_BUSY     | 409  | business-ref bound to a live instance
IN_USE            | 409  | delete of referenced type/flow, node edit
RESOLVE_FAILED    | 422  | no active approver for a node
TIMEOUT           | 504  | request deadline expired inside transaction
INTERNAL          | 500  | everything else

===============================================================================
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse error taxonomy surfaced to clients."""

    INVALID_INPUT = "INVALID_INPUT"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_ASSIGNED = "NOT_ASSIGNED"
    NOT_FOUND = "NOT_FOUND"
    FLOW_INACTIVE = "FLOW_INACTIVE"
    INSTANCE_TERMINAL = "INSTANCE_TERMINAL"
    ALREADY_DECIDED = "ALREADY_DECIDED"
    BUSINESS_BUSY = "BUSINESS_BUSY"
    IN_USE = "IN_USE"
    RESOLVE_FAILED = "RESOLVE_FAILED"
    TIMEOUT = "TIMEOUT"
    INTERNAL = "INTERNAL"


class OAKernelError(Exception):
    """
    Base exception for all OA kernel errors.

    All subclasses carry a `code` class attribute and a `kind` from
    ErrorKind.
    """

    code: str = "OA_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.INTERNAL


# Validation


class ValidationError(OAKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"
    kind: ErrorKind = ErrorKind.INVALID_INPUT


class InvalidInputError(ValidationError):
    """Malformed or out-of-range input."""

    code: str = "INVALID_INPUT"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidShapeError(ValidationError):
    """
    A node set violates flow shape rules.

    Orders must be unique within a flow and >= 1, the set must be
    non-empty, and FixedPerson/Role nodes need a participant.
    """

    code: str = "INVALID_SHAPE"

    def __init__(self, reason: str, flow_id: int | None = None):
        self.reason = reason
        self.flow_id = flow_id
        super().__init__(f"Invalid flow shape: {reason}")


class UnknownBusinessTagError(ValidationError):
    """Submission carries a business tag with no dispatcher binding."""

    code: str = "UNKNOWN_BUSINESS_TAG"

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"Unknown business module tag: {tag}")


# Access


class AccessError(OAKernelError):
    """Base exception for caller identity and permission errors."""

    code: str = "ACCESS_ERROR"
    kind: ErrorKind = ErrorKind.FORBIDDEN


class UnauthenticatedError(AccessError):
    """No usable caller identity."""

    code: str = "UNAUTHENTICATED"
    kind: ErrorKind = ErrorKind.UNAUTHENTICATED

    def __init__(self, reason: str = "authentication required"):
        self.reason = reason
        super().__init__(reason)


class ForbiddenError(AccessError):
    """Caller may not perform this operation."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: int, action: str, instance_id: int | None = None):
        self.actor_id = actor_id
        self.action = action
        self.instance_id = instance_id
        super().__init__(
            f"User {actor_id} may not {action}"
            + (f" on instance {instance_id}" if instance_id is not None else "")
        )


class NotAssignedError(AccessError):
    """Caller is not an approver of the instance's current node."""

    code: str = "NOT_ASSIGNED"
    kind: ErrorKind = ErrorKind.NOT_ASSIGNED

    def __init__(self, instance_id: int, approver_id: int):
        self.instance_id = instance_id
        self.approver_id = approver_id
        super().__init__(
            f"User {approver_id} is not assigned to instance {instance_id}"
        )


class NoOpenTaskError(NotAssignedError):
    """No open NodeRecord for (instance, current node, approver)."""

    code: str = "NO_OPEN_TASK"


# Not found


class NotFoundError(OAKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND

    entity_type: str = "entity"

    def __init__(self, entity_id: int | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ApprovalTypeNotFoundError(NotFoundError):
    code: str = "APPROVAL_TYPE_NOT_FOUND"
    entity_type = "Approval type"


class FlowNotFoundError(NotFoundError):
    code: str = "FLOW_NOT_FOUND"
    entity_type = "Approval flow"


class NodeNotFoundError(NotFoundError):
    code: str = "NODE_NOT_FOUND"
    entity_type = "Approval node"


class InstanceNotFoundError(NotFoundError):
    code: str = "INSTANCE_NOT_FOUND"
    entity_type = "Approval instance"


class UserNotFoundError(NotFoundError):
    code: str = "USER_NOT_FOUND"
    entity_type = "User"


class TodoNotFoundError(NotFoundError):
    code: str = "TODO_NOT_FOUND"
    entity_type = "Todo"


class NotificationNotFoundError(NotFoundError):
    code: str = "NOTIFICATION_NOT_FOUND"
    entity_type = "Notification"


class BusinessRecordNotFoundError(NotFoundError):
    """The business row named by a business-ref does not exist."""

    code: str = "BUSINESS_RECORD_NOT_FOUND"

    def __init__(self, tag: str, row_id: int):
        self.tag = tag
        self.row_id = row_id
        OAKernelError.__init__(self, f"Business record not found: {tag}:{row_id}")


# Catalog


class CatalogError(OAKernelError):
    """Base exception for catalog administration errors."""

    code: str = "CATALOG_ERROR"
    kind: ErrorKind = ErrorKind.IN_USE


class FlowInactiveError(CatalogError):
    """
    Flow exists but is deactivated.

    Maps to 404 on submission and 409 on catalog edits; the edge decides.
    """

    code: str = "FLOW_INACTIVE"
    kind: ErrorKind = ErrorKind.FLOW_INACTIVE

    def __init__(self, flow_id: int):
        self.flow_id = flow_id
        super().__init__(f"Approval flow {flow_id} is inactive")


class InUseError(CatalogError):
    """Catalog entity is still referenced and cannot be deleted."""

    code: str = "IN_USE"

    def __init__(self, entity_type: str, entity_id: int, referenced_by: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.referenced_by = referenced_by
        super().__init__(
            f"{entity_type} {entity_id} is still referenced by {referenced_by}"
        )


class FlowInUseError(CatalogError):
    """Node set of a flow referenced by a live instance cannot change."""

    code: str = "FLOW_IN_USE"

    def __init__(self, flow_id: int, live_instances: int):
        self.flow_id = flow_id
        self.live_instances = live_instances
        super().__init__(
            f"Approval flow {flow_id} is used by {live_instances} live "
            "instance(s); clone it to change its nodes"
        )


class DuplicateTypeCodeError(CatalogError):
    code: str = "DUPLICATE_TYPE_CODE"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Approval type code already exists: {type_code}")


# Instance state


class InstanceStateError(OAKernelError):
    """Base exception for operations refused by the instance state."""

    code: str = "INSTANCE_STATE_ERROR"
    kind: ErrorKind = ErrorKind.INSTANCE_TERMINAL


class InstanceTerminalError(InstanceStateError):
    """Operation requires a Running instance."""

    code: str = "INSTANCE_TERMINAL"

    def __init__(self, instance_id: int, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Approval instance {instance_id} is {status}")


class AlreadyDecidedError(InstanceStateError):
    """
    The approver's record is no longer pending.

    Raised for the loser of a concurrent decision and for replays of a
    decision that already went through. No state changes.
    """

    code: str = "ALREADY_DECIDED"
    kind: ErrorKind = ErrorKind.ALREADY_DECIDED

    def __init__(self, instance_id: int, record_id: int | None = None,
                 approver_id: int | None = None):
        self.instance_id = instance_id
        self.record_id = record_id
        self.approver_id = approver_id
        super().__init__(
            f"Approval instance {instance_id} was already decided"
            + (f" (record {record_id})" if record_id is not None else "")
        )


class BusinessBusyError(InstanceStateError):
    """Business record already bound to a non-terminal instance."""

    code: str = "BUSINESS_BUSY"
    kind: ErrorKind = ErrorKind.BUSINESS_BUSY

    def __init__(self, business_ref: str, instance_id: int):
        self.business_ref = business_ref
        self.instance_id = instance_id
        super().__init__(
            f"Business record {business_ref} is bound to live instance "
            f"{instance_id}"
        )


class DuplicateApproverError(InstanceStateError):
    """Approver already has a record at this node of this instance."""

    code: str = "DUPLICATE_APPROVER"
    kind: ErrorKind = ErrorKind.IN_USE

    def __init__(self, instance_id: int, node_id: int, approver_id: int):
        self.instance_id = instance_id
        self.node_id = node_id
        self.approver_id = approver_id
        super().__init__(
            f"User {approver_id} already has a record at node {node_id} "
            f"of instance {instance_id}"
        )


class InvalidInstanceTransitionError(InstanceStateError):
    """Requested status change is not in the instance state machine."""

    code: str = "INVALID_INSTANCE_TRANSITION"
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, instance_id: int, from_status: str, to_status: str):
        self.instance_id = instance_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for instance {instance_id}: "
            f"{from_status} -> {to_status}"
        )


# Resolution


class ResolveFailedError(OAKernelError):
    """
    The participant resolver yielded no approver for a node.

    The instance is left untouched so the same call can be retried after
    an administrator fixes the organisation data.
    """

    code: str = "RESOLVE_FAILED"
    kind: ErrorKind = ErrorKind.RESOLVE_FAILED

    def __init__(self, node_id: int | None, node_kind: str, reason: str):
        self.node_id = node_id
        self.node_kind = node_kind
        self.reason = reason
        super().__init__(
            f"Cannot resolve approvers for {node_kind} node {node_id}: {reason}"
        )


# Deadlines


class DeadlineExceededError(OAKernelError):
    """Request deadline expired inside a transaction."""

    code: str = "DEADLINE_EXCEEDED"
    kind: ErrorKind = ErrorKind.TIMEOUT

    def __init__(self, operation: str, timeout_seconds: float | None = None):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Deadline exceeded during {operation}"
            + (f" ({timeout_seconds}s)" if timeout_seconds is not None else "")
        )


# Dispatch


class DispatchError(OAKernelError):
    """A terminal transition has no usable side-effect binding."""

    code: str = "DISPATCH_ERROR"
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, tag: str, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"Dispatch failed for {tag}: {reason}")


# Audit


class AuditError(OAKernelError):
    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability


class ImmutabilityError(OAKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Decided NodeRecords, terminal Instances and AuditEvents are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: int | str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )

"""
ParticipantResolver -- turn a node and a request context into approver ids.

Responsibility:
    Resolves the concrete approvers of a node.  The resolution itself is a
    pure function over an ``OrgDirectory``; the directory is the only
    source of organisation facts.

Architecture position:
    Kernel > Services.  Depends on the ``OrgDirectory`` protocol only; the
    SQL implementation lives in ``oa_kernel.selectors.org_selector``.

Invariants enforced:
    - Results are non-empty, duplicate-free, and keep first-occurrence
      order.
    - Inactive users are never returned.

Failure modes:
    - ResolveFailedError: fixed person inactive or missing, role without
      active holders, or no active department head up to the root.
"""

from __future__ import annotations

from oa_kernel.domain.approval import InstanceContext, NodeInfo, NodeKind, OrgDirectory
from oa_kernel.exceptions import ResolveFailedError
from oa_kernel.logging_config import get_logger

logger = get_logger("services.resolver")


def build_context(directory: OrgDirectory, applicant_id: int) -> InstanceContext:
    """Snapshot the applicant's department chain for resolution."""
    return InstanceContext(
        applicant_id=applicant_id,
        department_chain=directory.department_chain(applicant_id),
    )


def _fixed_person(node: NodeInfo, directory: OrgDirectory) -> tuple[int, ...]:
    if node.participant_id is None:
        raise ResolveFailedError(node.id, node.kind.value, "no participant configured")
    if not directory.is_active_user(node.participant_id):
        raise ResolveFailedError(
            node.id, node.kind.value,
            f"user {node.participant_id} is inactive or missing",
        )
    return (node.participant_id,)


def _role(node: NodeInfo, directory: OrgDirectory) -> tuple[int, ...]:
    if node.participant_id is None:
        raise ResolveFailedError(node.id, node.kind.value, "no role configured")
    holders = directory.active_users_with_role(node.participant_id)
    if not holders:
        raise ResolveFailedError(
            node.id, node.kind.value,
            f"role {node.participant_id} has no active members",
        )
    return holders


def _department_head(
    node: NodeInfo, context: InstanceContext, directory: OrgDirectory,
) -> tuple[int, ...]:
    for department_id in context.department_chain:
        head = directory.department_head(department_id)
        if head is None:
            continue
        if directory.is_active_user(head):
            return (head,)
        logger.info(
            "department_head_inactive_skipped",
            extra={"department_id": department_id, "head_user_id": head},
        )
    raise ResolveFailedError(
        node.id, node.kind.value,
        f"no active department head above user {context.applicant_id}",
    )


def resolve_approvers(
    node: NodeInfo,
    context: InstanceContext,
    directory: OrgDirectory,
) -> tuple[int, ...]:
    """Approver ids for ``node``; never empty.

    Raises:
        ResolveFailedError: when no active approver can be found.
    """
    if node.kind == NodeKind.FIXED_PERSON:
        ids = _fixed_person(node, directory)
    elif node.kind == NodeKind.ROLE:
        ids = _role(node, directory)
    elif node.kind == NodeKind.DEPARTMENT_HEAD:
        ids = _department_head(node, context, directory)
    else:
        raise ResolveFailedError(node.id, str(node.kind), "unknown node kind")

    approvers = tuple(dict.fromkeys(ids))
    logger.debug(
        "approvers_resolved",
        extra={
            "node_id": node.id,
            "node_kind": node.kind.value,
            "approver_ids": list(approvers),
        },
    )
    return approvers


class ParticipantResolver:
    """Binds ``resolve_approvers`` to one directory."""

    def __init__(self, directory: OrgDirectory):
        self._directory = directory

    def context_for(self, applicant_id: int) -> InstanceContext:
        return build_context(self._directory, applicant_id)

    def resolve(self, node: NodeInfo, context: InstanceContext) -> tuple[int, ...]:
        return resolve_approvers(node, context, self._directory)

    def is_active_user(self, user_id: int) -> bool:
        return self._directory.is_active_user(user_id)

    def require_active(self, user_id: int, node: NodeInfo) -> None:
        """Check a manually chosen approver (task transfer)."""
        if not self._directory.is_active_user(user_id):
            raise ResolveFailedError(
                node.id, node.kind.value, f"user {user_id} is inactive or missing",
            )

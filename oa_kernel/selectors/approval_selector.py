"""
Module: oa_kernel.selectors.approval_selector
Responsibility: Read-only listings of approval instances: the caller's
    todo list, the caller's own applications, and single-instance reads.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ value objects and selectors/base.py.

Invariants enforced:
    - Read-only.
    - Results are InstanceSnapshot DTOs, newest first.

Failure modes:
    - InstanceNotFoundError from get_instance; listings never raise on
      absence of data.
"""

from __future__ import annotations

from sqlalchemy import or_, select

from oa_kernel.domain.approval import InstanceSnapshot, InstanceStatus, NodeRecordStatus
from oa_kernel.domain.dtos import Page, PageRequest
from oa_kernel.exceptions import InstanceNotFoundError, InvalidInputError
from oa_kernel.models.approval import ApprovalInstanceModel, ApprovalNodeRecordModel
from oa_kernel.selectors.base import BaseSelector


def _status_filter(status: str | InstanceStatus | None) -> InstanceStatus | None:
    if status is None or status == "":
        return None
    try:
        return InstanceStatus(status)
    except ValueError:
        raise InvalidInputError(f"unknown status {status!r}", field="status") from None


class ApprovalSelector(BaseSelector):

    def get_instance(self, instance_id: int) -> InstanceSnapshot:
        model = self.session.get(ApprovalInstanceModel, instance_id)
        if model is None:
            raise InstanceNotFoundError(instance_id)
        return model.to_dto()

    def list_todo(
        self,
        assignee_id: int,
        page: int = 1,
        page_size: int = 10,
    ) -> Page[InstanceSnapshot]:
        """Instances where ``assignee_id`` holds a pending node record."""
        window = PageRequest(page, page_size)
        pending = (
            select(ApprovalNodeRecordModel.instance_id)
            .where(
                ApprovalNodeRecordModel.approver_id == assignee_id,
                ApprovalNodeRecordModel.status == NodeRecordStatus.PENDING.value,
            )
        )
        stmt = (
            select(ApprovalInstanceModel)
            .where(
                ApprovalInstanceModel.id.in_(pending),
                ApprovalInstanceModel.status == InstanceStatus.RUNNING.value,
            )
            .order_by(ApprovalInstanceModel.id.desc())
        )
        return Page(
            data=tuple(m.to_dto() for m in self._page_rows(stmt, window)),
            total=self._count(stmt),
        )

    def list_applied(
        self,
        applicant_id: int,
        status: str | InstanceStatus | None = None,
        keyword: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Page[InstanceSnapshot]:
        """The applicant's own instances, optionally by status and title/body
        keyword."""
        window = PageRequest(page, page_size)
        stmt = select(ApprovalInstanceModel).where(
            ApprovalInstanceModel.applicant_id == applicant_id,
        )
        wanted = _status_filter(status)
        if wanted is not None:
            stmt = stmt.where(ApprovalInstanceModel.status == wanted.value)
        if keyword:
            pattern = f"%{keyword}%"
            stmt = stmt.where(or_(
                ApprovalInstanceModel.title.like(pattern),
                ApprovalInstanceModel.body.like(pattern),
            ))
        stmt = stmt.order_by(ApprovalInstanceModel.id.desc())
        return Page(
            data=tuple(m.to_dto() for m in self._page_rows(stmt, window)),
            total=self._count(stmt),
        )

"""
InstanceStore -- persistence of approval instances and node records.

Responsibility:
    Narrow write interface over ``approval_records`` and
    ``approval_node_records``.  Every mutation the engine makes to
    instance state goes through here.

Architecture position:
    Kernel > Services -- imperative shell.  Session-bound and flush-only;
    only the ApprovalEngine calls it, inside its own transaction.

Invariants enforced:
    - Node records close exactly once: closing is a compare-and-set
      ``UPDATE ... WHERE status = 'pending'``.
    - Terminal instances receive no new or changed records.
    - Instance status changes follow ``INSTANCE_TRANSITIONS``; terminal
      transitions clear the current node and stamp ``finished_at``.
    - A business-ref is bound to at most one live instance (checked here,
      backed by a partial unique index).

Failure modes:
    - InstanceNotFoundError, FlowNotFoundError, FlowInactiveError,
      BusinessBusyError, InstanceTerminalError, DuplicateApproverError,
      AlreadyDecidedError, InvalidInstanceTransitionError.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from oa_kernel.domain.approval import (
    LIVE_INSTANCE_STATUSES,
    TERMINAL_INSTANCE_STATUSES,
    BusinessRef,
    FlowInfo,
    InstanceSnapshot,
    InstanceStatus,
    NodeInfo,
    NodeRecordInfo,
    NodeRecordStatus,
    is_valid_transition,
)
from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.exceptions import (
    AlreadyDecidedError,
    BusinessBusyError,
    DuplicateApproverError,
    FlowInactiveError,
    FlowNotFoundError,
    InstanceNotFoundError,
    InstanceTerminalError,
    InvalidInstanceTransitionError,
    ResolveFailedError,
)
from oa_kernel.logging_config import get_logger
from oa_kernel.models.approval import (
    ApprovalFlowModel,
    ApprovalInstanceModel,
    ApprovalNodeRecordModel,
)
from oa_kernel.services.base import BaseService

logger = get_logger("services.instance_store")

_LIVE_STATUS_VALUES = tuple(s.value for s in LIVE_INSTANCE_STATUSES)
_PENDING = NodeRecordStatus.PENDING.value


class InstanceStore(BaseService):
    """
    Session-bound store for approval instances.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT resolve approvers or pick the next node.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _instance_model(
        self, instance_id: int, for_update: bool = False,
    ) -> ApprovalInstanceModel:
        stmt = (
            select(ApprovalInstanceModel)
            .where(ApprovalInstanceModel.id == instance_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise InstanceNotFoundError(instance_id)
        return model

    def _records(self, instance_id: int) -> tuple[NodeRecordInfo, ...]:
        rows = self.session.execute(
            select(ApprovalNodeRecordModel)
            .where(ApprovalNodeRecordModel.instance_id == instance_id)
            .order_by(ApprovalNodeRecordModel.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def _snapshot(self, model: ApprovalInstanceModel) -> InstanceSnapshot:
        return InstanceSnapshot(
            id=model.id,
            flow_id=model.flow_id,
            title=model.title,
            body=model.body,
            applicant_id=model.applicant_id,
            status=InstanceStatus(model.status),
            current_node_id=model.current_node_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            finished_at=model.finished_at,
            business_ref=model.business_ref,
            cancelled_by=model.cancelled_by,
            records=self._records(model.id),
        )

    def load_instance(self, instance_id: int, for_update: bool = False) -> InstanceSnapshot:
        """Instance plus all of its node records.

        ``for_update`` takes the row lock that serializes every decision
        on this instance until the transaction ends.
        """
        return self._snapshot(self._instance_model(instance_id, for_update))

    def find_live_by_business_ref(self, ref: BusinessRef) -> InstanceSnapshot | None:
        model = self.session.execute(
            select(ApprovalInstanceModel).where(
                ApprovalInstanceModel.business_tag == ref.tag,
                ApprovalInstanceModel.business_row_id == ref.row_id,
                ApprovalInstanceModel.status.in_(_LIVE_STATUS_VALUES),
            )
        ).scalar_one_or_none()
        return self._snapshot(model) if model is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_instance(
        self,
        flow: FlowInfo,
        applicant_id: int,
        title: str,
        body: str,
        business_ref: BusinessRef | None,
        first_node: NodeInfo,
        approver_ids: tuple[int, ...],
    ) -> InstanceSnapshot:
        """Write a Running instance and its first-node records.

        Raises:
            FlowInactiveError: the flow was deactivated before this write.
            BusinessBusyError: ``business_ref`` is bound to a live instance.
        """
        flow_row = self.session.execute(
            select(ApprovalFlowModel)
            .where(
                ApprovalFlowModel.id == flow.id,
                ApprovalFlowModel.deleted_at.is_(None),
            )
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if flow_row is None:
            raise FlowNotFoundError(flow.id)
        if not flow_row.is_active:
            raise FlowInactiveError(flow.id)

        if business_ref is not None:
            live = self.find_live_by_business_ref(business_ref)
            if live is not None:
                raise BusinessBusyError(str(business_ref), live.id)

        if not approver_ids:
            raise ResolveFailedError(first_node.id, first_node.kind.value, "no approvers")

        now = self._clock.now()
        model = ApprovalInstanceModel(
            flow_id=flow.id,
            title=title,
            body=body,
            applicant_id=applicant_id,
            current_node_id=first_node.id,
            status=InstanceStatus.RUNNING.value,
            business_tag=business_ref.tag if business_ref else None,
            business_row_id=business_ref.row_id if business_ref else None,
            created_at=now,
            updated_at=now,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(model)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if business_ref is None:
                raise
            live = self.find_live_by_business_ref(business_ref)
            if live is None:
                raise
            raise BusinessBusyError(str(business_ref), live.id) from None

        self._add_records(model.id, first_node.id, approver_ids, now)

        logger.info(
            "instance_created",
            extra={
                "instance_id": model.id,
                "flow_id": flow.id,
                "applicant_id": applicant_id,
                "business_ref": str(business_ref) if business_ref else None,
                "approver_count": len(approver_ids),
            },
        )
        return self._snapshot(model)

    def _add_records(self, instance_id, node_id, approver_ids, now) -> None:
        for approver_id in approver_ids:
            self.session.add(
                ApprovalNodeRecordModel(
                    instance_id=instance_id,
                    node_id=node_id,
                    approver_id=approver_id,
                    status=_PENDING,
                    comment="",
                    decided_at=None,
                    system_closed=False,
                    created_at=now,
                )
            )
        self.session.flush()

    def append_node_records(
        self, instance_id: int, node_id: int, approver_ids: tuple[int, ...],
    ) -> tuple[NodeRecordInfo, ...]:
        """Create pending records for ``approver_ids`` at ``node_id``.

        Raises:
            InstanceTerminalError: the instance is finished.
            DuplicateApproverError: an approver already has a record there.
        """
        model = self._instance_model(instance_id)
        status = InstanceStatus(model.status)
        if status in TERMINAL_INSTANCE_STATUSES:
            raise InstanceTerminalError(instance_id, status.value)

        existing = set(
            self.session.execute(
                select(ApprovalNodeRecordModel.approver_id).where(
                    ApprovalNodeRecordModel.instance_id == instance_id,
                    ApprovalNodeRecordModel.node_id == node_id,
                )
            ).scalars()
        )
        seen: set[int] = set()
        for approver_id in approver_ids:
            if approver_id in existing or approver_id in seen:
                raise DuplicateApproverError(instance_id, node_id, approver_id)
            seen.add(approver_id)

        self._add_records(instance_id, node_id, approver_ids, self._clock.now())
        return tuple(
            r for r in self._records(instance_id)
            if r.node_id == node_id and r.approver_id in seen
        )

    def close_node_record(
        self,
        record_id: int,
        outcome: NodeRecordStatus,
        comment: str = "",
        system: bool = False,
    ) -> NodeRecordInfo:
        """Compare-and-set a pending record to ``outcome``.

        Raises:
            AlreadyDecidedError: the record was no longer pending.
        """
        if outcome == NodeRecordStatus.PENDING:
            raise ValueError("a record cannot be closed as pending")

        instance_id = self.session.execute(
            select(ApprovalNodeRecordModel.instance_id).where(
                ApprovalNodeRecordModel.id == record_id
            )
        ).scalar_one()
        instance_status = InstanceStatus(self._instance_model(instance_id).status)
        if instance_status in TERMINAL_INSTANCE_STATUSES:
            raise InstanceTerminalError(instance_id, instance_status.value)

        result = self.session.execute(
            update(ApprovalNodeRecordModel)
            .where(
                ApprovalNodeRecordModel.id == record_id,
                ApprovalNodeRecordModel.status == _PENDING,
            )
            .values(
                status=outcome.value,
                comment=comment,
                decided_at=self._clock.now(),
                system_closed=system,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyDecidedError(instance_id, record_id=record_id)

        record = self.session.execute(
            select(ApprovalNodeRecordModel)
            .where(ApprovalNodeRecordModel.id == record_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        logger.debug(
            "node_record_closed",
            extra={"record_id": record_id, "status": outcome.value, "system": system},
        )
        return record.to_dto()

    def close_open_records(
        self,
        instance_id: int,
        node_id: int | None = None,
        outcome: NodeRecordStatus = NodeRecordStatus.SUPERSEDED,
    ) -> tuple[NodeRecordInfo, ...]:
        """System-close every pending record of the instance (or one node).

        Returns the records as they were before closing.
        """
        stmt = select(ApprovalNodeRecordModel).where(
            ApprovalNodeRecordModel.instance_id == instance_id,
            ApprovalNodeRecordModel.status == _PENDING,
        )
        if node_id is not None:
            stmt = stmt.where(ApprovalNodeRecordModel.node_id == node_id)
        pending = tuple(
            r.to_dto()
            for r in self.session.execute(
                stmt.order_by(ApprovalNodeRecordModel.id)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )
        if not pending:
            return ()

        self.session.execute(
            update(ApprovalNodeRecordModel)
            .where(
                ApprovalNodeRecordModel.id.in_([r.id for r in pending]),
                ApprovalNodeRecordModel.status == _PENDING,
            )
            .values(
                status=outcome.value,
                comment="",
                decided_at=self._clock.now(),
                system_closed=True,
            )
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            "node_records_superseded",
            extra={"instance_id": instance_id, "record_ids": [r.id for r in pending]},
        )
        return pending

    def transition(
        self,
        instance_id: int,
        current_node_id: int | None,
        status: InstanceStatus,
        cancelled_by: int | None = None,
    ) -> InstanceSnapshot:
        """Move the instance to ``status`` at ``current_node_id``.

        Raises:
            InstanceTerminalError: the instance is already finished.
            InvalidInstanceTransitionError: not an edge of the state machine,
                or a Running instance without a current node.
        """
        model = self._instance_model(instance_id)
        current = InstanceStatus(model.status)
        if current in TERMINAL_INSTANCE_STATUSES:
            raise InstanceTerminalError(instance_id, current.value)
        if not is_valid_transition(current, status):
            raise InvalidInstanceTransitionError(instance_id, current.value, status.value)

        now = self._clock.now()
        if status in TERMINAL_INSTANCE_STATUSES:
            model.current_node_id = None
            model.finished_at = now
        else:
            if current_node_id is None:
                raise InvalidInstanceTransitionError(
                    instance_id, current.value, status.value,
                )
            model.current_node_id = current_node_id
        if cancelled_by is not None:
            model.cancelled_by = cancelled_by
        model.status = status.value
        model.updated_at = now
        self.session.flush()

        logger.info(
            "instance_transitioned",
            extra={
                "instance_id": instance_id,
                "from_status": current.value,
                "to_status": status.value,
                "current_node_id": model.current_node_id,
            },
        )
        return self._snapshot(model)

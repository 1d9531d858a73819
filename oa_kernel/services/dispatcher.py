"""
SideEffectDispatcher -- business-module side effects and intent emission.

Responsibility:
    Applies the approve/reject outcome of a finished instance to the
    business row it governs, through a declarative binding table keyed by
    business-module tag.  Also builds the ordered approval intents for each
    engine operation and records them in the outbox.

Architecture position:
    Kernel > Services -- imperative shell.  Runs inside the engine's
    transaction; never commits.

Invariants enforced:
    - Handlers are idempotent: re-applying an outcome to a row already in
      the target state is a no-op.
    - A handler failure propagates and rolls back the whole decision.
    - Intents are written in the order they are built, so outbox id order
      is delivery order.

Failure modes:
    - UnknownBusinessTagError: tag not in the table at submit time.
    - DispatchError: tag not in the table at dispatch time.
    - BusinessRecordNotFoundError: business row missing or soft-deleted.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from oa_kernel.domain.approval import BusinessRef, InstanceSnapshot, NodeRecordInfo
from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.domain.intents import ApprovalIntent, IntentKind
from oa_kernel.exceptions import (
    BusinessRecordNotFoundError,
    DispatchError,
    UnknownBusinessTagError,
)
from oa_kernel.logging_config import get_logger
from oa_kernel.models.business import (
    ApplicationBase,
    ApplicationStatus,
    Asset,
    AssetDisposal,
    AssetStatus,
    BusinessTripApplication,
    Document,
    DocumentStatus,
    LeaveApplication,
    MeetingReservation,
    OvertimeApplication,
    ProbationReview,
    ResignationApplication,
    Seal,
    SealApplication,
    SealStatus,
    TransferApplication,
    Vehicle,
    VehicleApplication,
    VehicleStatus,
)
from oa_kernel.models.intent import ApprovalIntentModel

logger = get_logger("services.dispatcher")


@dataclass(frozen=True)
class DispatchContext:
    """What a handler knows about the decision that finished the instance."""

    instance_id: int
    applicant_id: int
    actor_id: int
    decided_at: datetime


Handler = Callable[[Session, int, DispatchContext], None]


@dataclass(frozen=True)
class BusinessBinding:
    tag: str
    model: type[ApplicationBase]
    on_approved: Handler
    on_rejected: Handler
    submitted_status: str = ApplicationStatus.PENDING.value


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _load_row(session: Session, model: type[ApplicationBase], tag: str, row_id: int):
    row = session.execute(
        select(model)
        .where(model.id == row_id, model.deleted_at.is_(None))
        .with_for_update()
    ).scalar_one_or_none()
    if row is None:
        raise BusinessRecordNotFoundError(tag, row_id)
    return row


def _set_status(
    session: Session, model, tag: str, row_id: int, target: str,
):
    """Move the row to ``target``; returns None when it is already there."""
    row = _load_row(session, model, tag, row_id)
    if row.status == target:
        logger.info(
            "dispatch_noop",
            extra={"business_ref": f"{tag}:{row_id}", "status": target},
        )
        return None
    row.status = target
    return row


def status_handler(model: type[ApplicationBase], tag: str, target: str) -> Handler:
    """Handler that only moves the row's status."""

    def handle(session: Session, row_id: int, ctx: DispatchContext) -> None:
        _set_status(session, model, tag, row_id, target)

    return handle


def _asset_disposed(session: Session, row_id: int, ctx: DispatchContext) -> None:
    row = _set_status(
        session, AssetDisposal, "asset-disposal", row_id, ApplicationStatus.APPROVED.value,
    )
    if row is None:
        return
    asset = session.get(Asset, row.asset_id, with_for_update=True)
    if asset is None:
        raise BusinessRecordNotFoundError("asset", row.asset_id)
    asset.status = AssetStatus.DISPOSED.value
    asset.disposed_at = ctx.decided_at


def _vehicle_assigned(session: Session, row_id: int, ctx: DispatchContext) -> None:
    row = _set_status(
        session, VehicleApplication, "vehicle-application", row_id,
        ApplicationStatus.APPROVED.value,
    )
    if row is None:
        return
    vehicle = session.get(Vehicle, row.vehicle_id, with_for_update=True)
    if vehicle is None:
        raise BusinessRecordNotFoundError("vehicle", row.vehicle_id)
    vehicle.status = VehicleStatus.IN_USE.value
    vehicle.user_id = row.applicant_id


def _seal_checked_out(session: Session, row_id: int, ctx: DispatchContext) -> None:
    row = _set_status(
        session, SealApplication, "seal-application", row_id,
        ApplicationStatus.APPROVED.value,
    )
    if row is None:
        return
    seal = session.get(Seal, row.seal_id, with_for_update=True)
    if seal is None:
        raise BusinessRecordNotFoundError("seal", row.seal_id)
    seal.status = SealStatus.CHECKED_OUT.value


def _document_signed(session: Session, row_id: int, ctx: DispatchContext) -> None:
    row = _set_status(session, Document, "document", row_id, DocumentStatus.SIGNED.value)
    if row is not None:
        row.sign_date = ctx.decided_at


def _meeting_approved(session: Session, row_id: int, ctx: DispatchContext) -> None:
    row = _set_status(
        session, MeetingReservation, "meeting-reservation", row_id,
        ApplicationStatus.APPROVED.value,
    )
    if row is not None:
        row.approved_at = ctx.decided_at


def _simple(tag: str, model: type[ApplicationBase]) -> BusinessBinding:
    return BusinessBinding(
        tag=tag,
        model=model,
        on_approved=status_handler(model, tag, ApplicationStatus.APPROVED.value),
        on_rejected=status_handler(model, tag, ApplicationStatus.REJECTED.value),
    )


def default_bindings() -> tuple[BusinessBinding, ...]:
    """The binding table for every business module that rides on the engine."""
    rejected = ApplicationStatus.REJECTED.value
    return (
        _simple("leave", LeaveApplication),
        _simple("overtime", OvertimeApplication),
        _simple("business-trip", BusinessTripApplication),
        _simple("transfer", TransferApplication),
        _simple("resignation", ResignationApplication),
        _simple("probation", ProbationReview),
        BusinessBinding(
            tag="asset-disposal",
            model=AssetDisposal,
            on_approved=_asset_disposed,
            on_rejected=status_handler(AssetDisposal, "asset-disposal", rejected),
        ),
        BusinessBinding(
            tag="vehicle-application",
            model=VehicleApplication,
            on_approved=_vehicle_assigned,
            on_rejected=status_handler(VehicleApplication, "vehicle-application", rejected),
        ),
        BusinessBinding(
            tag="seal-application",
            model=SealApplication,
            on_approved=_seal_checked_out,
            on_rejected=status_handler(SealApplication, "seal-application", rejected),
        ),
        BusinessBinding(
            tag="document",
            model=Document,
            on_approved=_document_signed,
            on_rejected=status_handler(Document, "document", DocumentStatus.DRAFT.value),
            submitted_status=DocumentStatus.IN_REVIEW.value,
        ),
        BusinessBinding(
            tag="meeting-reservation",
            model=MeetingReservation,
            on_approved=_meeting_approved,
            on_rejected=status_handler(MeetingReservation, "meeting-reservation", rejected),
        ),
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class SideEffectDispatcher:
    """
    Binding table plus intent builder.

    Stateless apart from its bindings; one instance is shared by every
    engine transaction.
    """

    def __init__(
        self,
        bindings: Iterable[BusinessBinding] | None = None,
        clock: Clock | None = None,
    ):
        table = tuple(bindings) if bindings is not None else default_bindings()
        self._bindings = {b.tag: b for b in table}
        self._clock = clock or SystemClock()

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(sorted(self._bindings))

    def binding_for(self, tag: str) -> BusinessBinding:
        binding = self._bindings.get(tag)
        if binding is None:
            raise DispatchError(tag, "no binding registered")
        return binding

    # Submit

    def attach(self, session: Session, ref: BusinessRef, instance_id: int) -> None:
        """Point the business row at its new instance.

        Raises:
            UnknownBusinessTagError: tag not in the table.
            BusinessRecordNotFoundError: row missing.
        """
        binding = self._bindings.get(ref.tag)
        if binding is None:
            raise UnknownBusinessTagError(ref.tag)
        row = _load_row(session, binding.model, ref.tag, ref.row_id)
        row.approval_record_id = instance_id
        row.status = binding.submitted_status
        session.flush()

    def check_target(self, session: Session, ref: BusinessRef) -> None:
        """Validate a business-ref before any instance row is written."""
        binding = self._bindings.get(ref.tag)
        if binding is None:
            raise UnknownBusinessTagError(ref.tag)
        _load_row(session, binding.model, ref.tag, ref.row_id)

    # Finish

    def dispatch(
        self,
        session: Session,
        ref: BusinessRef,
        approved: bool,
        ctx: DispatchContext,
    ) -> None:
        """Run the on-approved or on-rejected handler for ``ref``."""
        binding = self.binding_for(ref.tag)
        handler = binding.on_approved if approved else binding.on_rejected
        handler(session, ref.row_id, ctx)
        session.flush()
        logger.info(
            "side_effect_dispatched",
            extra={
                "business_ref": str(ref),
                "outcome": "approved" if approved else "rejected",
                "instance_id": ctx.instance_id,
            },
        )

    # Intents

    @staticmethod
    def assigned(
        instance: InstanceSnapshot, records: Iterable[NodeRecordInfo],
    ) -> list[ApprovalIntent]:
        return [
            ApprovalIntent(
                kind=IntentKind.TODO_ASSIGNED,
                instance_id=instance.id,
                recipient_id=r.approver_id,
                title=instance.title,
                payload={"node_id": r.node_id, "node_record_id": r.id},
            )
            for r in records
        ]

    @staticmethod
    def withdrawn(
        instance: InstanceSnapshot, records: Iterable[NodeRecordInfo], reason: str,
    ) -> list[ApprovalIntent]:
        return [
            ApprovalIntent(
                kind=IntentKind.TODO_WITHDRAWN,
                instance_id=instance.id,
                recipient_id=r.approver_id,
                title=instance.title,
                payload={"node_id": r.node_id, "node_record_id": r.id, "reason": reason},
            )
            for r in records
        ]

    @staticmethod
    def to_applicant(
        instance: InstanceSnapshot, kind: IntentKind, actor_id: int | None = None,
    ) -> ApprovalIntent:
        return ApprovalIntent(
            kind=kind,
            instance_id=instance.id,
            recipient_id=instance.applicant_id,
            title=instance.title,
            payload={
                "status": instance.status.value,
                "actor_id": actor_id,
                "business_ref": str(instance.business_ref) if instance.business_ref else None,
            },
        )

    def record_intents(
        self, session: Session, intents: Iterable[ApprovalIntent],
    ) -> tuple[int, ...]:
        """Write intents to the outbox in order; returns their ids."""
        now = self._clock.now()
        rows = [
            ApprovalIntentModel(
                instance_id=intent.instance_id,
                kind=intent.kind.value,
                recipient_id=intent.recipient_id,
                title=intent.title,
                payload=dict(intent.payload),
                created_at=now,
                attempts=0,
            )
            for intent in intents
        ]
        # One flush per row keeps ids in build order on every backend.
        for row in rows:
            session.add(row)
            session.flush()
        if rows:
            logger.debug(
                "intents_recorded",
                extra={
                    "instance_id": rows[0].instance_id,
                    "kinds": [r.kind for r in rows],
                },
            )
        return tuple(r.id for r in rows)

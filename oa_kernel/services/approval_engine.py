"""
ApprovalEngine -- the orchestrator of approval instances.

Responsibility:
    Runs every state-changing approval operation (submit, decide, cancel,
    transfer) as one database transaction: lock, validate, mutate through
    the InstanceStore, dispatch business side effects, record intents and
    audit events, commit.  After commit it asks the IntentRelay to deliver
    the recorded intents.

Architecture position:
    Kernel > Services -- the only service that owns transaction
    boundaries.  Everything else it calls is flush-only.

Invariants enforced:
    - Sole writer of instance and node record state.
    - Every decide/cancel/transfer starts by locking the instance row;
      concurrent decisions on one instance are serialized and the loser
      sees ``AlreadyDecided``.
    - Any-one-approves: the first decision at a node closes every other
      open record on that node as superseded.
    - Nothing is delivered for a rolled-back operation; intents go to the
      outbox inside the transaction and are relayed after commit.
    - A failed decide/cancel/transfer is audited in a separate transaction
      and the original error propagates unchanged.
    - Decisions are never retried automatically.

Failure modes:
    - Every kernel error the collaborators raise, unchanged.
    - DeadlineExceededError when the wall-clock deadline passes before
      commit or the database cancels a statement for it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from oa_kernel.db.engine import apply_statement_timeout
from oa_kernel.domain.approval import (
    BusinessRef,
    InstanceSnapshot,
    InstanceStatus,
    NodeRecordInfo,
    NodeRecordStatus,
    OrgDirectory,
    Outcome,
)
from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.domain.intents import ApprovalIntent, IntentKind
from oa_kernel.exceptions import (
    AlreadyDecidedError,
    DeadlineExceededError,
    FlowInactiveError,
    ForbiddenError,
    InstanceTerminalError,
    InvalidInputError,
    NoOpenTaskError,
    OAKernelError,
    UnauthenticatedError,
)
from oa_kernel.logging_config import LogContext, get_logger
from oa_kernel.selectors.org_selector import SqlOrgDirectory
from oa_kernel.services.auditor_service import AuditorService
from oa_kernel.services.catalog_service import CatalogCache, CatalogService
from oa_kernel.services.dispatcher import DispatchContext, SideEffectDispatcher
from oa_kernel.services.instance_store import InstanceStore
from oa_kernel.services.intent_relay import IntentRelay
from oa_kernel.services.participant_resolver import ParticipantResolver
from oa_kernel.utils.retry import retry_transient

logger = get_logger("services.approval_engine")

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

_TIMEOUT_MARKERS = (
    "statement timeout",
    "canceling statement",
    "lock timeout",
    "database is locked",
)


class _Deadline:
    """Wall-clock budget for one operation."""

    def __init__(self, operation: str, seconds: float | None, clock: Clock):
        self.operation = operation
        self.seconds = seconds
        self._clock = clock
        self._expires = clock.monotonic() + seconds if seconds else None

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return self._expires - self._clock.monotonic()

    def check(self) -> None:
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError(self.operation, self.seconds)


def _is_timeout(exc: OperationalError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


class ApprovalEngine:
    """
    Orchestrates approval instances across their whole life.

    One engine is shared by the process; every call opens its own session
    from ``session_factory`` and closes it before returning.

    Args:
        session_factory: zero-argument callable returning a new Session.
        dispatcher: business side effects and intent builder.
        relay: after-commit intent delivery; ``None`` leaves intents in
            the outbox for an external relay run.
        clock: time source for timestamps and deadlines.
        catalog_cache: shared flow/node cache.
        directory_factory: builds the OrgDirectory for a session.
        request_timeout_seconds: default deadline per operation.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: SideEffectDispatcher | None = None,
        relay: IntentRelay | None = None,
        clock: Clock | None = None,
        catalog_cache: CatalogCache | None = None,
        directory_factory: Callable[[Session], OrgDirectory] = SqlOrgDirectory,
        request_timeout_seconds: float | None = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher or SideEffectDispatcher(clock=self._clock)
        self._relay = relay
        self._cache = catalog_cache or CatalogCache(0, self._clock)
        self._directory_factory = directory_factory
        self._request_timeout = request_timeout_seconds

    @property
    def dispatcher(self) -> SideEffectDispatcher:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(
        self, operation: str, deadline: float | None,
    ) -> Iterator[tuple[Session, _Deadline]]:
        budget = _Deadline(
            operation,
            deadline if deadline is not None else self._request_timeout,
            self._clock,
        )
        session = self._session_factory()
        try:
            remaining = budget.remaining()
            if remaining is not None:
                budget.check()
                apply_statement_timeout(session, remaining)
            yield session, budget
            budget.check()
            session.commit()
            logger.debug("transaction_committed", extra={"operation": operation})
        except OperationalError as exc:
            session.rollback()
            if _is_timeout(exc):
                raise DeadlineExceededError(operation, budget.seconds) from exc
            raise
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back", extra={"operation": operation})
            raise
        finally:
            session.close()

    def _relay_committed(self) -> None:
        if self._relay is None:
            return
        try:
            self._relay.deliver_pending()
        except Exception:
            # The decision is committed; undelivered intents stay in the outbox.
            logger.exception("intent_relay_failed")

    def _record_failure(
        self, instance_id: int, actor_id: int, operation: str, exc: Exception,
    ) -> None:
        code = exc.code if isinstance(exc, OAKernelError) else "INTERNAL_ERROR"
        logger.warning(
            "decision_failed",
            extra={"operation": operation, "error_code": code, "error": str(exc)},
        )
        session = self._session_factory()
        try:
            AuditorService(session, self._clock).record_decision_failed(
                instance_id, actor_id, operation, code, str(exc),
            )
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "decision_failure_audit_failed",
                extra={"operation": operation, "error_code": code},
            )
        finally:
            session.close()

    def _audited(self, operation: str, instance_id: int, actor_id: int, fn):
        try:
            return fn()
        except Exception as exc:
            self._record_failure(instance_id, actor_id, operation, exc)
            raise

    @staticmethod
    def _require_identity(user_id: int | None) -> int:
        if user_id is None or user_id < 1:
            raise UnauthenticatedError("placeholder identity is not a caller")
        return user_id

    def _collaborators(self, session: Session):
        auditor = AuditorService(session, self._clock)
        catalog = CatalogService(session, auditor, self._cache, self._clock)
        store = InstanceStore(session, self._clock)
        resolver = ParticipantResolver(self._directory_factory(session))
        return store, catalog, resolver, auditor

    @staticmethod
    def _own_open_record(
        instance: InstanceSnapshot, approver_id: int,
    ) -> NodeRecordInfo:
        """The approver's open record at the current node, or the reason
        there is none.

        A record the approver closed themselves is always a replay.  A
        record the engine closed for them counts as decided only when
        another approver's decision settled it; a cancel decides nothing.
        """
        if instance.current_node_id is not None:
            for record in instance.open_records(instance.current_node_id):
                if record.approver_id == approver_id:
                    return record
        closed = [r for r in instance.records_for(approver_id) if not r.is_open]
        if any(not r.system_closed for r in closed):
            raise AlreadyDecidedError(instance.id, approver_id=approver_id)
        if closed and instance.status is not InstanceStatus.CANCELLED:
            raise AlreadyDecidedError(instance.id, approver_id=approver_id)
        if instance.is_terminal:
            raise InstanceTerminalError(instance.id, instance.status.value)
        raise NoOpenTaskError(instance.id, approver_id)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(
        self,
        flow_id: int,
        applicant_id: int,
        title: str,
        body: str = "",
        business_ref: BusinessRef | str | None = None,
        deadline: float | None = None,
    ) -> InstanceSnapshot:
        """Open a Running instance on ``flow_id`` at its first node.

        Raises:
            FlowNotFoundError, FlowInactiveError, ResolveFailedError,
            BusinessBusyError, UnknownBusinessTagError,
            BusinessRecordNotFoundError, InvalidInputError.
        """
        self._require_identity(applicant_id)
        if not title or not title.strip():
            raise InvalidInputError("title must not be empty", field="title")
        ref = BusinessRef.parse(business_ref) if isinstance(business_ref, str) else business_ref

        with LogContext.bind(actor_id=applicant_id):
            with self._transaction("submit", deadline) as (session, budget):
                snapshot = self._submit(session, flow_id, applicant_id, title, body, ref)
                budget.check()
            self._relay_committed()

        logger.info(
            "instance_submitted",
            extra={"instance_id": snapshot.id, "flow_id": flow_id},
        )
        return snapshot

    def submit_by_type(
        self,
        type_code: str,
        applicant_id: int,
        title: str,
        body: str = "",
        business_ref: BusinessRef | str | None = None,
        deadline: float | None = None,
    ) -> InstanceSnapshot:
        """Submit on the first active flow of an approval type."""
        session = self._session_factory()
        try:
            flow = CatalogService(session, cache=self._cache, clock=self._clock) \
                .active_flow_for_type(type_code)
        finally:
            session.close()
        return self.submit(flow.id, applicant_id, title, body, business_ref, deadline)

    def _submit(
        self,
        session: Session,
        flow_id: int,
        applicant_id: int,
        title: str,
        body: str,
        ref: BusinessRef | None,
    ) -> InstanceSnapshot:
        store, catalog, resolver, auditor = self._collaborators(session)

        flow = catalog.get_flow(flow_id)
        if not flow.is_active:
            raise FlowInactiveError(flow_id)
        if not resolver.is_active_user(applicant_id):
            raise UnauthenticatedError(f"user {applicant_id} is inactive or unknown")
        if ref is not None:
            self._dispatcher.check_target(session, ref)

        first = catalog.first_node(flow_id)
        approvers = resolver.resolve(first, resolver.context_for(applicant_id))

        snapshot = store.create_instance(
            flow, applicant_id, title, body, ref, first, approvers,
        )
        if ref is not None:
            self._dispatcher.attach(session, ref, snapshot.id)

        intents: list[ApprovalIntent] = [
            self._dispatcher.to_applicant(snapshot, IntentKind.SUBMITTED, applicant_id),
        ]
        intents += self._dispatcher.assigned(snapshot, snapshot.open_records())
        self._dispatcher.record_intents(session, intents)

        auditor.record_submitted(
            snapshot.id, flow_id, applicant_id,
            str(ref) if ref is not None else None, approvers,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def decide(
        self,
        instance_id: int,
        approver_id: int,
        outcome: Outcome | str,
        comment: str = "",
        deadline: float | None = None,
    ) -> InstanceSnapshot:
        """Record an approver's decision at the current node.

        Raises:
            AlreadyDecidedError: the approver already acted here, or lost a
                race for the same node.
            InstanceTerminalError: the instance is finished.
            NoOpenTaskError: the approver has no open record on it.
            ResolveFailedError: the next node has no active approver; the
                instance stays at the current node.
        """
        self._require_identity(approver_id)
        try:
            outcome = Outcome(outcome)
        except ValueError:
            raise InvalidInputError(
                f"unknown outcome {outcome!r}", field="outcome",
            ) from None

        def run() -> InstanceSnapshot:
            with self._transaction("decide", deadline) as (session, budget):
                result = self._decide(session, budget, instance_id, approver_id, outcome, comment)
                budget.check()
            return result

        with LogContext.bind(actor_id=approver_id, instance_id=instance_id):
            snapshot = self._audited("decide", instance_id, approver_id, run)
            self._relay_committed()
            logger.info(
                "decision_recorded",
                extra={"outcome": outcome.value, "status": snapshot.status.value},
            )
        return snapshot

    def approve(self, instance_id: int, approver_id: int, comment: str = "",
                deadline: float | None = None) -> InstanceSnapshot:
        return self.decide(instance_id, approver_id, Outcome.APPROVE, comment, deadline)

    def reject(self, instance_id: int, approver_id: int, comment: str = "",
               deadline: float | None = None) -> InstanceSnapshot:
        return self.decide(instance_id, approver_id, Outcome.REJECT, comment, deadline)

    def _decide(
        self,
        session: Session,
        budget: _Deadline,
        instance_id: int,
        approver_id: int,
        outcome: Outcome,
        comment: str,
    ) -> InstanceSnapshot:
        store, catalog, resolver, auditor = self._collaborators(session)

        instance = store.load_instance(instance_id, for_update=True)
        budget.check()
        record = self._own_open_record(instance, approver_id)
        node = catalog.get_node(record.node_id)

        store.close_node_record(record.id, outcome.record_status, comment)
        superseded = store.close_open_records(instance_id, node_id=node.id)

        intents = self._dispatcher.withdrawn(instance, (record,), "completed")
        intents += self._dispatcher.withdrawn(instance, superseded, "superseded")
        auditor.record_node_decision(
            instance_id, node.id, record.id, approver_id,
            outcome == Outcome.APPROVE, comment,
            tuple(r.id for r in superseded),
        )

        if outcome == Outcome.APPROVE:
            following = catalog.next_node(instance.flow_id, node.order)
            if following is not None:
                approvers = resolver.resolve(
                    following, resolver.context_for(instance.applicant_id),
                )
                added = store.append_node_records(instance_id, following.id, approvers)
                snapshot = store.transition(instance_id, following.id, InstanceStatus.RUNNING)
                intents += self._dispatcher.assigned(snapshot, added)
                auditor.record_node_advanced(
                    instance_id, node.id, following.id, approvers, approver_id,
                )
            else:
                snapshot = self._finish(
                    session, store, auditor, instance, InstanceStatus.APPROVED, approver_id,
                )
                intents.append(
                    self._dispatcher.to_applicant(snapshot, IntentKind.APPROVED, approver_id)
                )
        else:
            snapshot = self._finish(
                session, store, auditor, instance, InstanceStatus.REJECTED, approver_id,
            )
            intents.append(
                self._dispatcher.to_applicant(snapshot, IntentKind.REJECTED, approver_id)
            )

        self._dispatcher.record_intents(session, intents)
        return snapshot

    def _finish(
        self,
        session: Session,
        store: InstanceStore,
        auditor: AuditorService,
        instance: InstanceSnapshot,
        status: InstanceStatus,
        actor_id: int,
    ) -> InstanceSnapshot:
        snapshot = store.transition(instance.id, None, status)
        if instance.business_ref is not None:
            self._dispatcher.dispatch(
                session,
                instance.business_ref,
                approved=status == InstanceStatus.APPROVED,
                ctx=DispatchContext(
                    instance_id=instance.id,
                    applicant_id=instance.applicant_id,
                    actor_id=actor_id,
                    decided_at=self._clock.now(),
                ),
            )
        auditor.record_finished(
            instance.id, status.value, actor_id,
            str(instance.business_ref) if instance.business_ref else None,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Cancel / withdraw
    # ------------------------------------------------------------------

    def cancel(
        self, instance_id: int, requester_id: int, deadline: float | None = None,
    ) -> InstanceSnapshot:
        """Applicant cancels a Running instance.  No business handler runs.

        Raises:
            ForbiddenError: requester is not the applicant.
            InstanceTerminalError: the instance is finished.
        """
        self._require_identity(requester_id)

        def run() -> InstanceSnapshot:
            with self._transaction("cancel", deadline) as (session, budget):
                result = self._cancel(session, budget, instance_id, requester_id)
                budget.check()
            return result

        with LogContext.bind(actor_id=requester_id, instance_id=instance_id):
            snapshot = self._audited("cancel", instance_id, requester_id, run)
            self._relay_committed()
            logger.info("instance_cancelled")
        return snapshot

    def withdraw(
        self, instance_id: int, requester_id: int, deadline: float | None = None,
    ) -> InstanceSnapshot:
        return self.cancel(instance_id, requester_id, deadline)

    def _cancel(
        self, session: Session, budget: _Deadline, instance_id: int, requester_id: int,
    ) -> InstanceSnapshot:
        store, _, _, auditor = self._collaborators(session)

        instance = store.load_instance(instance_id, for_update=True)
        budget.check()
        if instance.applicant_id != requester_id:
            raise ForbiddenError(requester_id, "cancel", instance_id)
        if instance.is_terminal:
            raise InstanceTerminalError(instance_id, instance.status.value)

        closed = store.close_open_records(instance_id)
        snapshot = store.transition(
            instance_id, None, InstanceStatus.CANCELLED, cancelled_by=requester_id,
        )
        intents = self._dispatcher.withdrawn(snapshot, closed, "cancelled")
        intents.append(
            self._dispatcher.to_applicant(snapshot, IntentKind.CANCELLED, requester_id)
        )
        self._dispatcher.record_intents(session, intents)
        auditor.record_finished(
            instance_id, InstanceStatus.CANCELLED.value, requester_id,
            str(instance.business_ref) if instance.business_ref else None,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def transfer(
        self,
        instance_id: int,
        approver_id: int,
        new_approver_id: int,
        comment: str = "",
        deadline: float | None = None,
    ) -> InstanceSnapshot:
        """Hand the caller's open task on the current node to another user.

        Raises:
            DuplicateApproverError: the target already has a record there.
            ResolveFailedError: the target is inactive or unknown.
        """
        self._require_identity(approver_id)
        if new_approver_id == approver_id:
            raise InvalidInputError("cannot transfer a task to yourself", field="to_user_id")

        def run() -> InstanceSnapshot:
            with self._transaction("transfer", deadline) as (session, budget):
                result = self._transfer(
                    session, budget, instance_id, approver_id, new_approver_id, comment,
                )
                budget.check()
            return result

        with LogContext.bind(actor_id=approver_id, instance_id=instance_id):
            snapshot = self._audited("transfer", instance_id, approver_id, run)
            self._relay_committed()
            logger.info("task_transferred", extra={"to_approver_id": new_approver_id})
        return snapshot

    def _transfer(
        self,
        session: Session,
        budget: _Deadline,
        instance_id: int,
        approver_id: int,
        new_approver_id: int,
        comment: str,
    ) -> InstanceSnapshot:
        store, catalog, resolver, auditor = self._collaborators(session)

        instance = store.load_instance(instance_id, for_update=True)
        budget.check()
        record = self._own_open_record(instance, approver_id)
        node = catalog.get_node(record.node_id)
        resolver.require_active(new_approver_id, node)

        added = store.append_node_records(instance_id, node.id, (new_approver_id,))
        store.close_node_record(record.id, NodeRecordStatus.TRANSFERRED, comment)
        snapshot = store.transition(instance_id, node.id, InstanceStatus.RUNNING)

        intents = self._dispatcher.withdrawn(snapshot, (record,), "transferred")
        intents += self._dispatcher.assigned(snapshot, added)
        self._dispatcher.record_intents(session, intents)
        auditor.record_transfer(instance_id, node.id, approver_id, new_approver_id, comment)
        return snapshot

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load(self, instance_id: int) -> InstanceSnapshot:
        """Current snapshot of an instance; transient errors are retried."""

        def read() -> InstanceSnapshot:
            session = self._session_factory()
            try:
                return InstanceStore(session, self._clock).load_instance(instance_id)
            finally:
                session.rollback()
                session.close()

        return retry_transient(read, operation="load_instance")

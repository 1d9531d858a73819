"""
ApprovalEngine cancel, withdraw and transfer.
"""

import pytest

from oa_kernel.db.engine import session_scope
from oa_kernel.domain.approval import InstanceStatus, NodeRecordStatus
from oa_kernel.domain.intents import IntentKind
from oa_kernel.exceptions import (
    AlreadyDecidedError,
    DuplicateApproverError,
    ForbiddenError,
    InstanceTerminalError,
    InvalidInputError,
    NoOpenTaskError,
    ResolveFailedError,
)
from oa_kernel.models.business import LeaveApplication
from oa_kernel.models.inbox import TodoStatus
from oa_kernel.selectors.inbox_selector import TodoSelector
from oa_kernel.services.auditor_service import AuditorService


@pytest.fixture
def role_flow(make_flow, org, node):
    return make_flow([node.role(org.finance_role, 1), node.fixed(org.ceo, 2)])


class TestCancel:

    def test_cancel_closes_everything_without_handler(
        self, engine, org, role_flow, make_leave, session_factory, recording_sink,
    ):
        row_id = make_leave(org.alice)
        instance = engine.submit(
            role_flow.id, org.alice, "Leave", business_ref=f"leave:{row_id}",
        )
        recording_sink.clear()

        cancelled = engine.cancel(instance.id, org.alice)

        assert cancelled.status is InstanceStatus.CANCELLED
        assert cancelled.cancelled_by == org.alice
        assert cancelled.current_node_id is None
        assert {r.status for r in cancelled.records} == {NodeRecordStatus.SUPERSEDED}
        assert all(r.system_closed for r in cancelled.records)
        assert recording_sink.kinds() == [
            IntentKind.TODO_WITHDRAWN,
            IntentKind.TODO_WITHDRAWN,
            IntentKind.CANCELLED,
        ]
        with session_scope(session_factory) as session:
            row = session.get(LeaveApplication, row_id)
            assert row.status == "pending"
            carol_todos = TodoSelector(session).list(org.carol).data
        assert [t.status for t in carol_todos] == [TodoStatus.WITHDRAWN]

    def test_cancelled_business_row_can_be_resubmitted(
        self, engine, org, role_flow, make_leave,
    ):
        ref = f"leave:{make_leave(org.alice)}"
        first = engine.submit(role_flow.id, org.alice, "Leave", business_ref=ref)
        engine.cancel(first.id, org.alice)
        second = engine.submit(role_flow.id, org.alice, "Leave", business_ref=ref)
        assert second.id != first.id

    def test_only_applicant_may_cancel(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        with pytest.raises(ForbiddenError):
            engine.cancel(instance.id, org.carol)
        assert engine.load(instance.id).status is InstanceStatus.RUNNING

    def test_cancel_terminal_instance(self, engine, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")
        engine.approve(instance.id, org.ceo)
        before = engine.load(instance.id)

        with pytest.raises(InstanceTerminalError):
            engine.cancel(instance.id, org.alice)
        assert engine.load(instance.id) == before

    def test_cancel_twice(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        engine.cancel(instance.id, org.alice)
        with pytest.raises(InstanceTerminalError):
            engine.withdraw(instance.id, org.alice)

    def test_decide_after_cancel(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        engine.cancel(instance.id, org.alice)
        # carol's record was closed by the cancel, not by a decision.
        with pytest.raises(InstanceTerminalError):
            engine.approve(instance.id, org.carol)
        with pytest.raises(InstanceTerminalError):
            engine.reject(instance.id, org.dave)

    def test_own_decision_replayed_after_cancel(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        engine.approve(instance.id, org.carol)
        engine.cancel(instance.id, org.alice)
        with pytest.raises(AlreadyDecidedError):
            engine.approve(instance.id, org.carol)

    def test_superseded_by_peer_then_cancelled(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        engine.approve(instance.id, org.carol)
        with pytest.raises(AlreadyDecidedError):
            engine.approve(instance.id, org.dave)
        engine.cancel(instance.id, org.alice)
        # Once cancelled, dave's superseded record is not a decision of dave's.
        with pytest.raises(InstanceTerminalError):
            engine.approve(instance.id, org.dave)

    def test_withdraw_is_cancel(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        withdrawn = engine.withdraw(instance.id, org.alice)
        assert withdrawn.status is InstanceStatus.CANCELLED

    def test_cancel_audited(self, engine, org, role_flow, session_factory, clock):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        engine.cancel(instance.id, org.alice)
        with session_scope(session_factory) as session:
            trace = AuditorService(session, clock).get_trace("ApprovalInstance", instance.id)
        assert trace.actions[-1].value == "instance_cancelled"


class TestTransfer:

    def test_transfer_hands_task_over(
        self, engine, org, make_flow, node, recording_sink, session_factory,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")
        recording_sink.clear()

        moved = engine.transfer(instance.id, org.ceo, org.bob, "on holiday")

        assert moved.status is InstanceStatus.RUNNING
        assert moved.current_node_id == instance.current_node_id
        by_approver = {r.approver_id: r for r in moved.records}
        assert by_approver[org.ceo].status is NodeRecordStatus.TRANSFERRED
        assert by_approver[org.ceo].comment == "on holiday"
        assert by_approver[org.bob].status is NodeRecordStatus.PENDING
        assert recording_sink.kinds() == [IntentKind.TODO_WITHDRAWN, IntentKind.TODO_ASSIGNED]

        finished = engine.approve(instance.id, org.bob)
        assert finished.status is InstanceStatus.APPROVED

        with session_scope(session_factory) as session:
            ceo_todos = TodoSelector(session).list(org.ceo).data
            bob_todos = TodoSelector(session).list(org.bob).data
        assert [t.status for t in ceo_todos] == [TodoStatus.WITHDRAWN]
        assert [t.status for t in bob_todos] == [TodoStatus.COMPLETED]

    def test_transferred_approver_cannot_decide(self, engine, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")
        engine.transfer(instance.id, org.ceo, org.bob)
        with pytest.raises(AlreadyDecidedError):
            engine.approve(instance.id, org.ceo)

    def test_transfer_to_inactive_user(self, engine, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")
        with pytest.raises(ResolveFailedError):
            engine.transfer(instance.id, org.ceo, org.erin)

    def test_transfer_to_existing_approver(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        with pytest.raises(DuplicateApproverError):
            engine.transfer(instance.id, org.carol, org.dave)
        after = engine.load(instance.id)
        assert {r.status for r in after.records} == {NodeRecordStatus.PENDING}

    def test_transfer_to_self(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        with pytest.raises(InvalidInputError):
            engine.transfer(instance.id, org.carol, org.carol)

    def test_transfer_without_task(self, engine, org, role_flow):
        instance = engine.submit(role_flow.id, org.alice, "Leave")
        with pytest.raises(NoOpenTaskError):
            engine.transfer(instance.id, org.bob, org.admin)

"""
Concurrent decisions on one instance.

Each thread calls the engine through its own session; the instance lock
serializes them, so exactly one decision per pending record wins.

Runs against SQLite by default.  Set OA_TEST_DATABASE_URL to a PostgreSQL
DSN to exercise row locks instead of the database-level write lock.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from oa_kernel.db.engine import session_scope
from oa_kernel.domain.approval import InstanceStatus, NodeRecordStatus
from oa_kernel.domain.intents import IntentKind
from oa_kernel.exceptions import AlreadyDecidedError, BusinessBusyError
from oa_kernel.models.business import LeaveApplication

pytestmark = pytest.mark.slow_locks


def _race(*calls):
    """Start every call at the same moment; return (result, error) pairs."""
    barrier = threading.Barrier(len(calls))

    def run(call):
        barrier.wait()
        try:
            return call(), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return [f.result() for f in [pool.submit(run, c) for c in calls]]


class TestConcurrentApprovals:

    def test_two_approvers_one_node(
        self, engine, org, make_flow, node, make_leave, session_factory, recording_sink,
    ):
        flow = make_flow([node.role(org.finance_role, 1)])
        row_id = make_leave(org.alice)
        instance = engine.submit(flow.id, org.alice, "Leave", business_ref=f"leave:{row_id}")
        recording_sink.clear()

        outcomes = _race(
            lambda: engine.approve(instance.id, org.carol),
            lambda: engine.approve(instance.id, org.dave),
        )

        winners = [result for result, error in outcomes if error is None]
        losers = [error for result, error in outcomes if error is not None]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], AlreadyDecidedError)

        final = engine.load(instance.id)
        assert final.status is InstanceStatus.APPROVED
        statuses = sorted(r.status.value for r in final.records)
        assert statuses == [NodeRecordStatus.APPROVED.value, NodeRecordStatus.SUPERSEDED.value]
        assert recording_sink.kinds(instance.id).count(IntentKind.APPROVED) == 1
        with session_scope(session_factory) as session:
            assert session.get(LeaveApplication, row_id).status == "approved"

    def test_same_approver_twice(self, engine, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1), node.fixed(org.bob, 2)])
        instance = engine.submit(flow.id, org.alice, "Leave")

        outcomes = _race(
            lambda: engine.approve(instance.id, org.ceo),
            lambda: engine.approve(instance.id, org.ceo),
        )

        errors = [error for _, error in outcomes if error is not None]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyDecidedError)
        after = engine.load(instance.id)
        assert after.status is InstanceStatus.RUNNING
        assert [r.approver_id for r in after.records] == [org.ceo, org.bob]

    def test_approve_races_cancel(self, engine, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")

        outcomes = _race(
            lambda: engine.approve(instance.id, org.ceo),
            lambda: engine.cancel(instance.id, org.alice),
        )

        assert sum(1 for _, error in outcomes if error is None) == 1
        final = engine.load(instance.id)
        assert final.status in (InstanceStatus.APPROVED, InstanceStatus.CANCELLED)
        assert final.current_node_id is None
        assert all(r.status is not NodeRecordStatus.PENDING for r in final.records)


class TestConcurrentSubmits:

    def test_one_live_instance_per_business_row(self, engine, org, make_flow, node, make_leave):
        flow = make_flow([node.fixed(org.ceo, 1)])
        ref = f"leave:{make_leave(org.alice)}"

        outcomes = _race(
            lambda: engine.submit(flow.id, org.alice, "Leave", business_ref=ref),
            lambda: engine.submit(flow.id, org.alice, "Leave", business_ref=ref),
        )

        created = [result for result, error in outcomes if error is None]
        errors = [error for _, error in outcomes if error is not None]
        assert len(created) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], BusinessBusyError)

"""
ApprovalSelector: todo list, applied list and single-instance reads.
"""

import pytest

from oa_kernel.db.engine import session_scope
from oa_kernel.domain.approval import InstanceStatus
from oa_kernel.exceptions import InstanceNotFoundError, InvalidInputError
from oa_kernel.selectors.approval_selector import ApprovalSelector


@pytest.fixture
def instances(engine, org, make_flow, node):
    """alice: one running, one approved, one cancelled."""
    flow = make_flow([node.role(org.finance_role, 1), node.fixed(org.ceo, 2)])
    running = engine.submit(flow.id, org.alice, "Annual leave", body="two days in March")
    approved = engine.submit(flow.id, org.alice, "Sick leave")
    engine.approve(approved.id, org.carol)
    engine.approve(approved.id, org.ceo)
    cancelled = engine.submit(flow.id, org.alice, "Business trip")
    engine.cancel(cancelled.id, org.alice)
    return running, approved, cancelled


class TestListTodo:

    def test_only_pending_records_of_running_instances(
        self, session_factory, org, instances,
    ):
        running, _, _ = instances
        with session_scope(session_factory) as session:
            selector = ApprovalSelector(session)
            carol = selector.list_todo(org.carol)
            ceo = selector.list_todo(org.ceo)
        assert [i.id for i in carol.data] == [running.id]
        assert carol.total == 1
        assert ceo.total == 0

    def test_paging(self, engine, session_factory, org, make_flow, node):
        flow = make_flow([node.fixed(org.ceo, 1)])
        ids = [engine.submit(flow.id, org.alice, f"Request {n}").id for n in range(3)]
        with session_scope(session_factory) as session:
            page = ApprovalSelector(session).list_todo(org.ceo, page=2, page_size=2)
        assert page.total == 3
        assert [i.id for i in page.data] == [ids[0]]

    def test_bad_page_size(self, session_factory, org):
        with session_scope(session_factory) as session:
            with pytest.raises(InvalidInputError):
                ApprovalSelector(session).list_todo(org.ceo, page_size=0)


class TestListApplied:

    def test_newest_first(self, session_factory, org, instances):
        running, approved, cancelled = instances
        with session_scope(session_factory) as session:
            page = ApprovalSelector(session).list_applied(org.alice)
        assert [i.id for i in page.data] == [cancelled.id, approved.id, running.id]

    @pytest.mark.parametrize("status,expected_index", [
        ("running", 0),
        ("approved", 1),
        (InstanceStatus.CANCELLED, 2),
    ])
    def test_status_filter(self, session_factory, org, instances, status, expected_index):
        with session_scope(session_factory) as session:
            page = ApprovalSelector(session).list_applied(org.alice, status=status)
        assert [i.id for i in page.data] == [instances[expected_index].id]

    def test_keyword_matches_title_or_body(self, session_factory, org, instances):
        running, approved, _ = instances
        with session_scope(session_factory) as session:
            selector = ApprovalSelector(session)
            by_title = selector.list_applied(org.alice, keyword="leave")
            by_body = selector.list_applied(org.alice, keyword="March")
        assert {i.id for i in by_title.data} == {running.id, approved.id}
        assert [i.id for i in by_body.data] == [running.id]

    def test_unknown_status(self, session_factory, org):
        with session_scope(session_factory) as session:
            with pytest.raises(InvalidInputError):
                ApprovalSelector(session).list_applied(org.alice, status="archived")

    def test_other_applicants_are_hidden(self, session_factory, org, instances):
        with session_scope(session_factory) as session:
            assert ApprovalSelector(session).list_applied(org.bob).total == 0


class TestGetInstance:

    def test_snapshot_includes_records(self, session_factory, instances):
        _, approved, _ = instances
        with session_scope(session_factory) as session:
            snapshot = ApprovalSelector(session).get_instance(approved.id)
        assert snapshot.status is InstanceStatus.APPROVED
        assert len(snapshot.records) == 3

    def test_missing(self, session_factory):
        with session_scope(session_factory) as session:
            with pytest.raises(InstanceNotFoundError):
                ApprovalSelector(session).get_instance(404)

"""
IntentRelay: ordered, at-least-once delivery from the outbox.
"""

import pytest
from sqlalchemy import select

from oa_kernel.db.engine import session_scope
from oa_kernel.domain.intents import IntentKind
from oa_kernel.models.inbox import Notification, Todo
from oa_kernel.models.intent import ApprovalIntentModel
from oa_kernel.services.approval_engine import ApprovalEngine
from oa_kernel.services.dispatcher import SideEffectDispatcher
from oa_kernel.services.intent_relay import (
    IntentRelay,
    MemoryIntentSink,
    NotificationSink,
    RelayReport,
    TodoSink,
)


class FlakySink:
    """Fails every delivery while ``broken`` is set."""

    def __init__(self):
        self.broken = True

    def deliver(self, session, intent):
        if self.broken:
            raise ConnectionError("smtp timeout")


@pytest.fixture
def quiet_engine(session_factory, clock):
    """Engine that leaves intents in the outbox."""
    return ApprovalEngine(
        session_factory,
        dispatcher=SideEffectDispatcher(clock=clock),
        relay=None,
        clock=clock,
        request_timeout_seconds=None,
    )


def _outbox(session_factory):
    with session_scope(session_factory) as session:
        return [
            (row.id, row.kind, row.attempts, row.last_error, row.delivered_at)
            for row in session.execute(
                select(ApprovalIntentModel).order_by(ApprovalIntentModel.id)
            ).scalars()
        ]


class TestDelivery:

    def test_delivers_in_outbox_order(
        self, quiet_engine, session_factory, clock, org, make_flow, node,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        first = quiet_engine.submit(flow.id, org.alice, "First")
        second = quiet_engine.submit(flow.id, org.bob, "Second")
        sink = MemoryIntentSink()

        report = IntentRelay(session_factory, sinks=[sink], clock=clock).deliver_pending()

        assert report == RelayReport(delivered=4, failed=0, remaining=0)
        assert [(i.instance_id, i.kind) for i in sink.delivered] == [
            (first.id, IntentKind.SUBMITTED),
            (first.id, IntentKind.TODO_ASSIGNED),
            (second.id, IntentKind.SUBMITTED),
            (second.id, IntentKind.TODO_ASSIGNED),
        ]
        assert all(delivered_at is not None for *_, delivered_at in _outbox(session_factory))

    def test_nothing_pending(self, session_factory, clock):
        report = IntentRelay(session_factory, sinks=[], clock=clock).deliver_pending()
        assert report == RelayReport(delivered=0, failed=0, remaining=0)

    def test_failure_stops_the_run(
        self, quiet_engine, session_factory, clock, org, make_flow, node, captured_logs,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        quiet_engine.submit(flow.id, org.alice, "Leave")
        sink = FlakySink()

        report = IntentRelay(session_factory, sinks=[sink], clock=clock).deliver_pending()

        assert report.delivered == 0
        assert report.failed == 1
        assert report.remaining == 2
        (_, _, attempts, error, delivered), (_, _, later_attempts, _, later_delivered) = (
            _outbox(session_factory)
        )
        assert (attempts, delivered) == (1, None)
        assert error == "ConnectionError: smtp timeout"
        assert (later_attempts, later_delivered) == (0, None)
        assert any(r["message"] == "intent_delivery_failed" for r in captured_logs())

        sink.broken = False
        retry = IntentRelay(session_factory, sinks=[sink], clock=clock).deliver_pending()
        assert retry == RelayReport(delivered=2, failed=0, remaining=0)

    def test_failed_sink_rolls_back_earlier_sinks(
        self, quiet_engine, session_factory, clock, org, make_flow, node,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        quiet_engine.submit(flow.id, org.alice, "Leave")

        IntentRelay(
            session_factory, sinks=[NotificationSink(clock), FlakySink()], clock=clock,
        ).deliver_pending()

        with session_scope(session_factory) as session:
            assert session.execute(select(Notification)).scalars().all() == []

    def test_exhausted_intent_is_skipped(
        self, quiet_engine, session_factory, clock, org, make_flow, node, captured_logs,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = quiet_engine.submit(flow.id, org.alice, "Leave")
        sink = FlakySink()
        relay = IntentRelay(session_factory, sinks=[sink], clock=clock, max_attempts=2)
        relay.deliver_pending()
        assert not any(r["message"] == "intent_abandoned" for r in captured_logs())
        relay.deliver_pending()

        (abandoned,) = [r for r in captured_logs() if r["message"] == "intent_abandoned"]
        assert abandoned["level"] == "ERROR"
        assert abandoned["kind"] == IntentKind.SUBMITTED.value
        assert abandoned["instance_id"] == instance.id
        assert abandoned["attempts"] == 2

        sink.broken = False
        recorder = MemoryIntentSink()
        IntentRelay(
            session_factory, sinks=[recorder], clock=clock, max_attempts=2,
        ).deliver_pending()

        assert recorder.kinds() == [IntentKind.TODO_ASSIGNED]
        first_row = _outbox(session_factory)[0]
        assert first_row[2] == 2
        assert first_row[4] is None


class TestSinks:

    def test_redelivery_is_harmless(
        self, quiet_engine, session_factory, clock, org, make_flow, node,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        quiet_engine.submit(flow.id, org.alice, "Leave")
        with session_scope(session_factory) as session:
            intents = [
                row.to_dto() for row in session.execute(
                    select(ApprovalIntentModel).order_by(ApprovalIntentModel.id)
                ).scalars()
            ]

        sinks = (TodoSink(clock), NotificationSink(clock))
        for _ in range(2):
            with session_scope(session_factory) as session:
                for intent in intents:
                    for sink in sinks:
                        sink.deliver(session, intent)

        with session_scope(session_factory) as session:
            todos = session.execute(select(Todo)).scalars().all()
            notes = session.execute(select(Notification)).scalars().all()
        assert [(t.user_id, t.status) for t in todos] == [(org.ceo, "open")]
        assert [n.user_id for n in notes] == [org.alice]

    def test_completed_reason_completes_todo(
        self, engine, session_factory, org, make_flow, node,
    ):
        flow = make_flow([node.fixed(org.ceo, 1)])
        instance = engine.submit(flow.id, org.alice, "Leave")
        engine.approve(instance.id, org.ceo)
        with session_scope(session_factory) as session:
            todo = session.execute(select(Todo)).scalar_one()
        assert todo.status == "completed"
        assert todo.completed_at is not None

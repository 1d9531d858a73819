"""
InboxService: a user's own todo and notification actions.
"""

from contextlib import contextmanager

import pytest

from oa_kernel.db.engine import session_scope
from oa_kernel.exceptions import NotificationNotFoundError, TodoNotFoundError
from oa_kernel.models.inbox import NotificationStatus, TodoStatus
from oa_kernel.selectors.inbox_selector import NotificationSelector, TodoSelector
from oa_kernel.services.inbox_service import InboxService


@pytest.fixture
def inbox_scope(session_factory, clock):
    @contextmanager
    def _scope():
        with session_scope(session_factory) as session:
            yield InboxService(session, clock), session

    return _scope


class TestTodos:

    def test_create_is_idempotent_per_node_record(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            first = inbox.create_todo(org.ceo, "Leave", node_record_id=41)
            again = inbox.create_todo(org.ceo, "Leave (again)", node_record_id=41)
            other = inbox.create_todo(org.bob, "Leave", node_record_id=41)
        assert first.status == TodoStatus.OPEN
        assert again == first
        assert other.id != first.id

    def test_free_todos_are_not_deduplicated(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            a = inbox.create_todo(org.bob, "Expense report")
            b = inbox.create_todo(org.bob, "Expense report")
        assert a.id != b.id

    def test_complete_own_todo(self, inbox_scope, org, clock):
        with inbox_scope() as (inbox, _):
            todo = inbox.create_todo(org.bob, "Expense report")
        clock.advance(60)
        with inbox_scope() as (inbox, _):
            done = inbox.complete_todo(todo.id, org.bob)
        assert done.status == TodoStatus.COMPLETED
        assert done.completed_at == clock.now()

    def test_complete_twice_keeps_first_completion(self, inbox_scope, org, clock):
        with inbox_scope() as (inbox, _):
            todo = inbox.create_todo(org.bob, "Expense report")
            first = inbox.complete_todo(todo.id, org.bob)
        clock.advance(60)
        with inbox_scope() as (inbox, _):
            again = inbox.complete_todo(todo.id, org.bob)
        assert again.completed_at.replace(tzinfo=None) == first.completed_at.replace(tzinfo=None)

    def test_someone_elses_todo_is_not_found(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            todo = inbox.create_todo(org.bob, "Expense report")
        with inbox_scope() as (inbox, _):
            with pytest.raises(TodoNotFoundError):
                inbox.complete_todo(todo.id, org.carol)
            with pytest.raises(TodoNotFoundError):
                inbox.complete_todo(10_000, org.bob)

    def test_listing_by_status(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            keep = inbox.create_todo(org.bob, "Open one")
            done = inbox.create_todo(org.bob, "Done one")
            inbox.complete_todo(done.id, org.bob)
        with inbox_scope() as (_, session):
            open_page = TodoSelector(session).list(org.bob, status="open")
            everything = TodoSelector(session).list(org.bob)
        assert [t.id for t in open_page.data] == [keep.id]
        assert everything.total == 2
        assert [t.id for t in everything.data] == [done.id, keep.id]


class TestNotifications:

    def test_mark_read(self, inbox_scope, org, clock):
        with inbox_scope() as (inbox, _):
            note = inbox.create_notification(org.alice, "Leave", "approved")
        with inbox_scope() as (inbox, session):
            read = inbox.mark_read(note.id, org.alice)
            assert NotificationSelector(session).unread_count(org.alice) == 0
        assert read.status == NotificationStatus.READ
        assert read.read_at == clock.now()

    def test_mark_read_of_other_user(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            note = inbox.create_notification(org.alice, "Leave")
        with inbox_scope() as (inbox, _):
            with pytest.raises(NotificationNotFoundError):
                inbox.mark_read(note.id, org.bob)

    def test_mark_all_read_counts_only_unread(self, inbox_scope, org):
        with inbox_scope() as (inbox, _):
            first = inbox.create_notification(org.alice, "One")
            inbox.create_notification(org.alice, "Two")
            inbox.create_notification(org.alice, "Three")
            inbox.create_notification(org.bob, "Not mine")
            inbox.mark_read(first.id, org.alice)
        with inbox_scope() as (inbox, session):
            assert inbox.mark_all_read(org.alice) == 2
        with inbox_scope() as (_, session):
            assert NotificationSelector(session).unread_count(org.alice) == 0
            assert NotificationSelector(session).unread_count(org.bob) == 1

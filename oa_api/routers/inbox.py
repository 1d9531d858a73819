"""The caller's todos and notifications."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from oa_api.deps import AppServices, current_user_id, get_services
from oa_api.schemas import (
    MarkedCount,
    NotificationOut,
    NotificationPage,
    TodoOut,
    TodoPage,
    UnreadCount,
)
from oa_kernel.db.engine import session_scope
from oa_kernel.selectors.inbox_selector import NotificationSelector, TodoSelector
from oa_kernel.services.inbox_service import InboxService

router = APIRouter(prefix="/api", tags=["inbox"])


@router.get("/todos", response_model=TodoPage)
def list_todos(
    status_: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1),
    page_size: int = Query(default=10),
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        result = TodoSelector(session).list(user_id, status_, page, page_size)
    return TodoPage(
        data=[TodoOut.model_validate(t) for t in result.data], total=result.total,
    )


@router.post("/todos/{todo_id}/complete", response_model=TodoOut)
def complete_todo(
    todo_id: int,
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        todo = InboxService(session, services.clock).complete_todo(todo_id, user_id)
    return TodoOut.model_validate(todo)


@router.get("/notifications", response_model=NotificationPage)
def list_notifications(
    page: int = Query(default=1),
    page_size: int = Query(default=10),
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        result = NotificationSelector(session).list(user_id, page, page_size)
    return NotificationPage(
        data=[NotificationOut.model_validate(n) for n in result.data],
        total=result.total,
    )


@router.get("/notifications/unread-count", response_model=UnreadCount)
def unread_count(
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        return UnreadCount(count=NotificationSelector(session).unread_count(user_id))


@router.post("/notifications/read-all", response_model=MarkedCount)
def mark_all_read(
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        updated = InboxService(session, services.clock).mark_all_read(user_id)
    return MarkedCount(updated=updated)


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
def mark_read(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        note = InboxService(session, services.clock).mark_read(notification_id, user_id)
    return NotificationOut.model_validate(note)

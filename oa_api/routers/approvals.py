"""Approval instances: submit, decide, cancel, transfer, list."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from oa_api.deps import (
    AppServices,
    current_user_id,
    get_engine,
    get_services,
    relay_after_response,
)
from oa_api.errors import status_overrides
from oa_api.schemas import (
    CommentRequest,
    InstanceOut,
    InstancePage,
    SubmitRequest,
    TransferRequest,
)
from oa_kernel.db.engine import session_scope
from oa_kernel.exceptions import ErrorKind, ForbiddenError, InvalidInputError
from oa_kernel.selectors.approval_selector import ApprovalSelector
from oa_kernel.services.approval_engine import ApprovalEngine

router = APIRouter(prefix="/api/approvals", tags=["approvals"])

_CANCEL_STATUSES = status_overrides({ErrorKind.INSTANCE_TERMINAL: 409})
_RELAY = Depends(relay_after_response)


@router.get("", response_model=InstancePage)
def list_approvals(
    assignee: str | None = Query(default=None),
    applicant: str | None = Query(default=None),
    status_: str | None = Query(default=None, alias="status"),
    keyword: str | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int = Query(default=10),
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    if assignee is not None:
        if assignee != "me":
            raise InvalidInputError("assignee must be 'me'", field="assignee")
        if status_ not in (None, "", "pending", "running"):
            raise InvalidInputError(
                "the todo list only holds pending tasks", field="status",
            )
        with session_scope(services.session_factory) as session:
            result = ApprovalSelector(session).list_todo(user_id, page, page_size)
    elif applicant is not None:
        if applicant != "me":
            raise InvalidInputError("applicant must be 'me'", field="applicant")
        with session_scope(services.session_factory) as session:
            result = ApprovalSelector(session).list_applied(
                user_id, status_, keyword, page, page_size,
            )
    else:
        raise InvalidInputError("pass assignee=me or applicant=me")

    return InstancePage(
        data=[InstanceOut.from_snapshot(s) for s in result.data],
        total=result.total,
    )


@router.post(
    "/{type_code}",
    status_code=status.HTTP_201_CREATED,
    response_model=InstanceOut,
    dependencies=[_RELAY],
)
def submit(
    type_code: str,
    body: SubmitRequest,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    snapshot = engine.submit_by_type(
        type_code, user_id, body.title, body.body, body.business_ref,
    )
    return InstanceOut.from_snapshot(snapshot)


@router.get("/{instance_id}", response_model=InstanceOut)
def get_approval(
    instance_id: int,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    snapshot = engine.load(instance_id)
    involved = snapshot.applicant_id == user_id or any(
        r.approver_id == user_id for r in snapshot.records
    )
    if not involved:
        raise ForbiddenError(user_id, "read", instance_id)
    return InstanceOut.from_snapshot(snapshot)


@router.post(
    "/{instance_id}/approve",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[_RELAY],
)
def approve(
    instance_id: int,
    body: CommentRequest | None = None,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    engine.approve(instance_id, user_id, body.comment if body else "")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{instance_id}/reject",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[_RELAY],
)
def reject(
    instance_id: int,
    body: CommentRequest | None = None,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    engine.reject(instance_id, user_id, body.comment if body else "")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{instance_id}/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(_CANCEL_STATUSES), _RELAY],
)
def cancel(
    instance_id: int,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    engine.cancel(instance_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{instance_id}/withdraw",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(_CANCEL_STATUSES), _RELAY],
)
def withdraw(
    instance_id: int,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    engine.withdraw(instance_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{instance_id}/transfer",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[_RELAY],
)
def transfer(
    instance_id: int,
    body: TransferRequest,
    user_id: int = Depends(current_user_id),
    engine: ApprovalEngine = Depends(get_engine),
):
    engine.transfer(instance_id, user_id, body.to_user_id, body.comment)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

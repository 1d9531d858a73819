"""Approval catalog administration: types, flows and their nodes.

Any caller may read the catalog; writes need the configured admin role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from oa_api.deps import AppServices, catalog_admin_id, current_user_id, get_services
from oa_api.errors import status_overrides
from oa_api.schemas import (
    ApprovalTypeIn,
    ApprovalTypeOut,
    ApprovalTypeUpdate,
    CloneRequest,
    FlowIn,
    FlowOut,
    FlowUpdate,
    NodeOut,
    NodesIn,
)
from oa_kernel.db.engine import session_scope
from oa_kernel.exceptions import ErrorKind
from oa_kernel.services.auditor_service import AuditorService
from oa_kernel.services.catalog_service import CatalogService

router = APIRouter(
    prefix="/api",
    tags=["catalog"],
    dependencies=[Depends(status_overrides({ErrorKind.FLOW_INACTIVE: 409}))],
)


def _catalog(session: Session, services: AppServices) -> CatalogService:
    return CatalogService(
        session,
        AuditorService(session, services.clock),
        services.catalog_cache,
        services.clock,
    )


# Types


@router.get("/approval-types", response_model=list[ApprovalTypeOut])
def list_types(
    only_active: bool = Query(default=False),
    keyword: str | None = Query(default=None),
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        types = _catalog(session, services).list_types(only_active, keyword)
    return [ApprovalTypeOut.of(t) for t in types]


@router.post(
    "/approval-types", status_code=status.HTTP_201_CREATED, response_model=ApprovalTypeOut,
)
def create_type(
    body: ApprovalTypeIn,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        created = _catalog(session, services).create_type(
            body.code, body.name, body.sort, actor_id=user_id,
        )
    return ApprovalTypeOut.of(created)


@router.put("/approval-types/{type_id}", response_model=ApprovalTypeOut)
def update_type(
    type_id: int,
    body: ApprovalTypeUpdate,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        updated = _catalog(session, services).update_type(
            type_id,
            name=body.name,
            sort=body.sort,
            is_active=body.is_active,
            actor_id=user_id,
        )
    return ApprovalTypeOut.of(updated)


@router.delete("/approval-types/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_type(
    type_id: int,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        _catalog(session, services).delete_type(type_id, actor_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Flows


@router.get("/approval-flows", response_model=list[FlowOut])
def list_flows(
    type_id: int | None = Query(default=None),
    only_active: bool = Query(default=False),
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        catalog = _catalog(session, services)
        return [
            FlowOut.of(f, catalog.list_nodes(f.id))
            for f in catalog.list_flows(type_id, only_active)
        ]


@router.post(
    "/approval-flows", status_code=status.HTTP_201_CREATED, response_model=FlowOut,
)
def create_flow(
    body: FlowIn,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        catalog = _catalog(session, services)
        flow = catalog.create_flow(
            body.type_id,
            body.name,
            body.description,
            [n.to_spec() for n in body.nodes],
            actor_id=user_id,
        )
        return FlowOut.of(flow, catalog.list_nodes(flow.id))


@router.get("/approval-flows/{flow_id}", response_model=FlowOut)
def get_flow(
    flow_id: int,
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        catalog = _catalog(session, services)
        return FlowOut.of(catalog.get_flow(flow_id), catalog.list_nodes(flow_id))


@router.put("/approval-flows/{flow_id}", response_model=FlowOut)
def update_flow(
    flow_id: int,
    body: FlowUpdate,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        catalog = _catalog(session, services)
        if body.is_active is True:
            catalog.activate_flow(flow_id, actor_id=user_id)
        if body.name is not None or body.description is not None:
            catalog.update_flow_metadata(
                flow_id, name=body.name, description=body.description, actor_id=user_id,
            )
        if body.is_active is False:
            catalog.deactivate_flow(flow_id, actor_id=user_id)
        return FlowOut.of(catalog.get_flow(flow_id), catalog.list_nodes(flow_id))


@router.delete("/approval-flows/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_flow(
    flow_id: int,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        _catalog(session, services).delete_flow(flow_id, actor_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/approval-flows/{flow_id}/nodes", response_model=list[NodeOut])
def replace_nodes(
    flow_id: int,
    body: NodesIn,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        nodes = _catalog(session, services).upsert_nodes(
            flow_id, [n.to_spec() for n in body.nodes], actor_id=user_id,
        )
    return [NodeOut.model_validate(n) for n in nodes]


@router.post(
    "/approval-flows/{flow_id}/clone",
    status_code=status.HTTP_201_CREATED,
    response_model=FlowOut,
)
def clone_flow(
    flow_id: int,
    body: CloneRequest | None = None,
    user_id: int = Depends(catalog_admin_id),
    services: AppServices = Depends(get_services),
):
    with session_scope(services.session_factory) as session:
        catalog = _catalog(session, services)
        clone = catalog.clone_flow(flow_id, body.name if body else None, actor_id=user_id)
        return FlowOut.of(clone, catalog.list_nodes(clone.id))

"""
CatalogService -- approval types, flows and their ordered nodes.

Responsibility:
    Read-mostly registry of approval definitions with administrative
    writes.  Flows are versioned by replacement: once a live instance uses
    a flow, its node set is frozen and changes go through ``clone_flow``.

Architecture position:
    Kernel > Services -- imperative shell.  Session-bound and flush-only;
    the caller owns the transaction.  The optional ``CatalogCache`` is
    process-wide and shared between sessions.

Invariants enforced:
    - Node orders unique within a flow and >= 1; a flow has >= 1 node.
    - Node set of a flow referenced by a live instance is immutable.
    - A type referenced by any flow is never deleted; a flow referenced by
      a live instance is never deleted.

Failure modes:
    - InvalidShapeError, FlowInUseError, InUseError, FlowInactiveError,
      DuplicateTypeCodeError, ApprovalTypeNotFoundError, FlowNotFoundError.

Audit relevance:
    Every write records a ``catalog_changed`` audit event when an auditor
    is supplied.
"""

from __future__ import annotations

import threading
from typing import Any

from sqlalchemy import func, or_, select

from oa_kernel.domain.approval import (
    LIVE_INSTANCE_STATUSES,
    ApprovalTypeInfo,
    FlowInfo,
    NodeInfo,
    NodeSpec,
    validate_node_specs,
)
from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.exceptions import (
    ApprovalTypeNotFoundError,
    DuplicateTypeCodeError,
    FlowInactiveError,
    FlowInUseError,
    FlowNotFoundError,
    InUseError,
    InvalidShapeError,
    NodeNotFoundError,
)
from oa_kernel.logging_config import get_logger
from oa_kernel.models.approval import (
    ApprovalFlowModel,
    ApprovalInstanceModel,
    ApprovalNodeModel,
    ApprovalTypeModel,
)
from oa_kernel.services.auditor_service import AuditorService
from oa_kernel.services.base import BaseService

logger = get_logger("services.catalog")

_LIVE_STATUS_VALUES = tuple(s.value for s in LIVE_INSTANCE_STATUSES)


class CatalogCache:
    """TTL cache of flows and node lists keyed by flow id.

    ``ttl_seconds`` of 0 disables caching entirely.  Entries are dropped
    wholesale on every catalog write.
    """

    def __init__(self, ttl_seconds: float = 0, clock: Clock | None = None):
        self._ttl = ttl_seconds
        self._clock = clock or SystemClock()
        self._flows: dict[int, tuple[float, FlowInfo]] = {}
        self._nodes: dict[int, tuple[float, tuple[NodeInfo, ...]]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def _fresh(self, entry: tuple[float, Any] | None) -> Any:
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock.monotonic() - stored_at >= self._ttl:
            return None
        return value

    def get_flow(self, flow_id: int) -> FlowInfo | None:
        if not self.enabled:
            return None
        with self._lock:
            return self._fresh(self._flows.get(flow_id))

    def put_flow(self, flow: FlowInfo) -> None:
        if self.enabled:
            with self._lock:
                self._flows[flow.id] = (self._clock.monotonic(), flow)

    def get_nodes(self, flow_id: int) -> tuple[NodeInfo, ...] | None:
        if not self.enabled:
            return None
        with self._lock:
            return self._fresh(self._nodes.get(flow_id))

    def put_nodes(self, flow_id: int, nodes: tuple[NodeInfo, ...]) -> None:
        if self.enabled:
            with self._lock:
                self._nodes[flow_id] = (self._clock.monotonic(), nodes)

    def invalidate(self) -> None:
        with self._lock:
            self._flows.clear()
            self._nodes.clear()


class CatalogService(BaseService):
    """
    Approval catalog reads and administrative writes.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT decide instance state; the engine re-checks flow
          activity under lock at write time.
    """

    def __init__(
        self,
        session,
        auditor: AuditorService | None = None,
        cache: CatalogCache | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._cache = cache or CatalogCache(0)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _type_model(self, type_id: int) -> ApprovalTypeModel:
        model = self.session.get(ApprovalTypeModel, type_id)
        if model is None or model.deleted_at is not None:
            raise ApprovalTypeNotFoundError(type_id)
        return model

    def _flow_model(self, flow_id: int, for_update: bool = False) -> ApprovalFlowModel:
        stmt = select(ApprovalFlowModel).where(
            ApprovalFlowModel.id == flow_id,
            ApprovalFlowModel.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise FlowNotFoundError(flow_id)
        return model

    def _editable_flow(self, flow_id: int) -> ApprovalFlowModel:
        model = self._flow_model(flow_id, for_update=True)
        if not model.is_active:
            raise FlowInactiveError(flow_id)
        return model

    def _live_instance_count(self, flow_id: int) -> int:
        return self.session.execute(
            select(func.count(ApprovalInstanceModel.id)).where(
                ApprovalInstanceModel.flow_id == flow_id,
                ApprovalInstanceModel.status.in_(_LIVE_STATUS_VALUES),
            )
        ).scalar_one()

    def _changed(
        self,
        entity_type: str,
        entity_id: int,
        change: str,
        actor_id: int | None,
        **details: Any,
    ) -> None:
        self._cache.invalidate()
        if self._auditor is not None:
            self._auditor.record_catalog_change(
                entity_type, entity_id, change, actor_id, details,
            )
        logger.info(
            "catalog_changed",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "change": change,
                **details,
            },
        )

    def _live_nodes(self, flow_id: int) -> tuple[NodeInfo, ...]:
        rows = self.session.execute(
            select(ApprovalNodeModel)
            .where(
                ApprovalNodeModel.flow_id == flow_id,
                ApprovalNodeModel.deleted_at.is_(None),
            )
            .order_by(ApprovalNodeModel.order)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def _add_nodes(self, flow_id: int, specs: tuple[NodeSpec, ...]) -> None:
        for spec in specs:
            self.session.add(
                ApprovalNodeModel(
                    flow_id=flow_id,
                    name=spec.name,
                    kind=spec.kind.value,
                    participant_id=spec.participant_id,
                    order=spec.order,
                )
            )
        self.session.flush()

    # ------------------------------------------------------------------
    # Approval types
    # ------------------------------------------------------------------

    def list_types(
        self, only_active: bool = False, keyword: str | None = None,
    ) -> list[ApprovalTypeInfo]:
        stmt = select(ApprovalTypeModel).where(ApprovalTypeModel.deleted_at.is_(None))
        if only_active:
            stmt = stmt.where(ApprovalTypeModel.is_active.is_(True))
        if keyword:
            like = f"%{keyword}%"
            stmt = stmt.where(
                or_(ApprovalTypeModel.name.like(like), ApprovalTypeModel.code.like(like))
            )
        stmt = stmt.order_by(ApprovalTypeModel.sort, ApprovalTypeModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def get_type(self, code: str) -> ApprovalTypeInfo:
        model = self.session.execute(
            select(ApprovalTypeModel).where(
                ApprovalTypeModel.code == code,
                ApprovalTypeModel.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalTypeNotFoundError(code)
        return model.to_dto()

    def get_type_by_id(self, type_id: int) -> ApprovalTypeInfo:
        return self._type_model(type_id).to_dto()

    def create_type(
        self, code: str, name: str, sort: int = 0, actor_id: int | None = None,
    ) -> ApprovalTypeInfo:
        exists = self.session.execute(
            select(ApprovalTypeModel.id).where(
                ApprovalTypeModel.code == code,
                ApprovalTypeModel.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if exists is not None:
            raise DuplicateTypeCodeError(code)

        model = ApprovalTypeModel(code=code, name=name, sort=sort, is_active=True)
        self.session.add(model)
        self.session.flush()
        self._changed("ApprovalType", model.id, "created", actor_id, code=code)
        return model.to_dto()

    def update_type(
        self,
        type_id: int,
        *,
        name: str | None = None,
        sort: int | None = None,
        is_active: bool | None = None,
        actor_id: int | None = None,
    ) -> ApprovalTypeInfo:
        model = self._type_model(type_id)
        if name is not None:
            model.name = name
        if sort is not None:
            model.sort = sort
        if is_active is not None:
            model.is_active = is_active
        self.session.flush()
        self._changed("ApprovalType", type_id, "updated", actor_id)
        return model.to_dto()

    def deactivate_type(self, type_id: int, actor_id: int | None = None) -> ApprovalTypeInfo:
        model = self._type_model(type_id)
        model.is_active = False
        self.session.flush()
        self._changed("ApprovalType", type_id, "deactivated", actor_id)
        return model.to_dto()

    def delete_type(self, type_id: int, actor_id: int | None = None) -> None:
        model = self._type_model(type_id)
        flows = self.session.execute(
            select(func.count(ApprovalFlowModel.id)).where(
                ApprovalFlowModel.type_id == type_id,
                ApprovalFlowModel.deleted_at.is_(None),
            )
        ).scalar_one()
        if flows:
            raise InUseError("ApprovalType", type_id, f"{flows} flow(s)")
        model.deleted_at = self._clock.now()
        self.session.flush()
        self._changed("ApprovalType", type_id, "deleted", actor_id)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def list_flows(
        self, type_id: int | None = None, only_active: bool = False,
    ) -> list[FlowInfo]:
        stmt = select(ApprovalFlowModel).where(ApprovalFlowModel.deleted_at.is_(None))
        if type_id is not None:
            stmt = stmt.where(ApprovalFlowModel.type_id == type_id)
        if only_active:
            stmt = stmt.where(ApprovalFlowModel.is_active.is_(True))
        stmt = stmt.order_by(ApprovalFlowModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def get_flow(self, flow_id: int) -> FlowInfo:
        cached = self._cache.get_flow(flow_id)
        if cached is not None:
            return cached
        flow = self._flow_model(flow_id).to_dto()
        self._cache.put_flow(flow)
        return flow

    def active_flow_for_type(self, type_code: str) -> FlowInfo:
        """The lowest-id active flow of an active type.

        Raises:
            ApprovalTypeNotFoundError: unknown type code.
            FlowInactiveError: the type, or every one of its flows, is
                deactivated.
            FlowNotFoundError: the type has no flows at all.
        """
        approval_type = self.get_type(type_code)
        flows = self.list_flows(type_id=approval_type.id)
        if not flows:
            raise FlowNotFoundError(type_code)
        if approval_type.is_active:
            for flow in flows:
                if flow.is_active:
                    return flow
        raise FlowInactiveError(flows[0].id)

    def create_flow(
        self,
        type_id: int,
        name: str,
        description: str = "",
        nodes: list[NodeSpec] | tuple[NodeSpec, ...] = (),
        actor_id: int | None = None,
    ) -> FlowInfo:
        """Create a flow together with its nodes.

        Raises:
            InvalidShapeError: ``nodes`` is empty or violates order rules.
        """
        specs = validate_node_specs(nodes)
        self._type_model(type_id)

        flow = ApprovalFlowModel(
            type_id=type_id, name=name, description=description, is_active=True,
        )
        self.session.add(flow)
        self.session.flush()
        self._add_nodes(flow.id, specs)
        self._changed("ApprovalFlow", flow.id, "created", actor_id, node_count=len(specs))
        return flow.to_dto()

    def update_flow_metadata(
        self,
        flow_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        actor_id: int | None = None,
    ) -> FlowInfo:
        model = self._editable_flow(flow_id)
        if name is not None:
            model.name = name
        if description is not None:
            model.description = description
        self.session.flush()
        self._changed("ApprovalFlow", flow_id, "updated", actor_id)
        return model.to_dto()

    def deactivate_flow(self, flow_id: int, actor_id: int | None = None) -> FlowInfo:
        model = self._flow_model(flow_id, for_update=True)
        model.is_active = False
        self.session.flush()
        self._changed("ApprovalFlow", flow_id, "deactivated", actor_id)
        return model.to_dto()

    def activate_flow(self, flow_id: int, actor_id: int | None = None) -> FlowInfo:
        model = self._flow_model(flow_id, for_update=True)
        model.is_active = True
        self.session.flush()
        self._changed("ApprovalFlow", flow_id, "activated", actor_id)
        return model.to_dto()

    def delete_flow(self, flow_id: int, actor_id: int | None = None) -> None:
        """Soft-delete a flow and its nodes.

        Raises:
            InUseError: a non-terminal instance still uses the flow.
        """
        model = self._flow_model(flow_id, for_update=True)
        live = self._live_instance_count(flow_id)
        if live:
            raise InUseError("ApprovalFlow", flow_id, f"{live} live instance(s)")

        now = self._clock.now()
        for node in self.session.execute(
            select(ApprovalNodeModel).where(
                ApprovalNodeModel.flow_id == flow_id,
                ApprovalNodeModel.deleted_at.is_(None),
            )
        ).scalars():
            node.deleted_at = now
        model.deleted_at = now
        self.session.flush()
        self._changed("ApprovalFlow", flow_id, "deleted", actor_id)

    def clone_flow(
        self, flow_id: int, name: str | None = None, actor_id: int | None = None,
    ) -> FlowInfo:
        """Copy a flow and its nodes under a new id; the source is untouched."""
        source = self._flow_model(flow_id)
        nodes = self._live_nodes(flow_id)

        clone = ApprovalFlowModel(
            type_id=source.type_id,
            name=name or source.name,
            description=source.description,
            is_active=True,
        )
        self.session.add(clone)
        self.session.flush()
        self._add_nodes(
            clone.id,
            tuple(
                NodeSpec(n.name, n.kind, n.order, n.participant_id) for n in nodes
            ),
        )
        self._changed("ApprovalFlow", clone.id, "cloned", actor_id, source_flow_id=flow_id)
        return clone.to_dto()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def list_nodes(self, flow_id: int) -> tuple[NodeInfo, ...]:
        """Nodes of a flow ascending by order."""
        cached = self._cache.get_nodes(flow_id)
        if cached is not None:
            return cached
        self._flow_model(flow_id)
        nodes = self._live_nodes(flow_id)
        self._cache.put_nodes(flow_id, nodes)
        return nodes

    def upsert_nodes(
        self,
        flow_id: int,
        nodes: list[NodeSpec] | tuple[NodeSpec, ...],
        actor_id: int | None = None,
    ) -> tuple[NodeInfo, ...]:
        """Replace the whole node set of a flow.

        Raises:
            InvalidShapeError: the new set violates order rules.
            FlowInUseError: a non-terminal instance uses the flow.
            FlowInactiveError: the flow is deactivated.
        """
        specs = validate_node_specs(nodes, flow_id)
        self._editable_flow(flow_id)

        live = self._live_instance_count(flow_id)
        if live:
            raise FlowInUseError(flow_id, live)

        now = self._clock.now()
        for node in self.session.execute(
            select(ApprovalNodeModel).where(
                ApprovalNodeModel.flow_id == flow_id,
                ApprovalNodeModel.deleted_at.is_(None),
            )
        ).scalars():
            node.deleted_at = now
        self.session.flush()

        self._add_nodes(flow_id, specs)
        self._changed("ApprovalFlow", flow_id, "nodes_replaced", actor_id, node_count=len(specs))
        return self._live_nodes(flow_id)

    def get_node(self, node_id: int) -> NodeInfo:
        """Any node by id, including nodes of retired versions."""
        model = self.session.get(ApprovalNodeModel, node_id)
        if model is None:
            raise NodeNotFoundError(node_id)
        return model.to_dto()

    def first_node(self, flow_id: int) -> NodeInfo:
        nodes = self.list_nodes(flow_id)
        if not nodes:
            raise InvalidShapeError("flow has no nodes", flow_id)
        return nodes[0]

    def next_node(self, flow_id: int, after_order: int) -> NodeInfo | None:
        for node in self.list_nodes(flow_id):
            if node.order > after_order:
                return node
        return None

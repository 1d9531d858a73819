"""Request and response bodies for the HTTP edge."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from oa_kernel.domain.approval import (
    ApprovalTypeInfo,
    FlowInfo,
    InstanceSnapshot,
    InstanceStatus,
    NodeInfo,
    NodeKind,
    NodeRecordStatus,
    NodeSpec,
)

# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


class SubmitRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(default="", max_length=5000)
    business_ref: str | None = Field(default=None, description="tag:row_id")


class CommentRequest(BaseModel):
    comment: str = Field(default="", max_length=500)


class TransferRequest(BaseModel):
    to_user_id: int = Field(ge=1)
    comment: str = Field(default="", max_length=500)


class NodeRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    node_id: int
    approver_id: int
    status: NodeRecordStatus
    comment: str
    decided_at: datetime | None
    system_closed: bool


class InstanceOut(BaseModel):
    id: int
    flow_id: int
    title: str
    body: str
    applicant_id: int
    status: InstanceStatus
    current_node_id: int | None
    business_ref: str | None
    cancelled_by: int | None
    created_at: datetime | None
    updated_at: datetime | None
    finished_at: datetime | None
    records: list[NodeRecordOut] = []

    @classmethod
    def from_snapshot(cls, snapshot: InstanceSnapshot) -> InstanceOut:
        return cls(
            id=snapshot.id,
            flow_id=snapshot.flow_id,
            title=snapshot.title,
            body=snapshot.body,
            applicant_id=snapshot.applicant_id,
            status=snapshot.status,
            current_node_id=snapshot.current_node_id,
            business_ref=str(snapshot.business_ref) if snapshot.business_ref else None,
            cancelled_by=snapshot.cancelled_by,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
            finished_at=snapshot.finished_at,
            records=[NodeRecordOut.model_validate(r) for r in snapshot.records],
        )


class InstancePage(BaseModel):
    data: list[InstanceOut]
    total: int


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ApprovalTypeIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    sort: int = 0


class ApprovalTypeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    sort: int | None = None
    is_active: bool | None = None


class ApprovalTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    sort: int
    is_active: bool

    @classmethod
    def of(cls, info: ApprovalTypeInfo) -> ApprovalTypeOut:
        return cls.model_validate(info)


class NodeIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    kind: NodeKind
    order: int
    participant_id: int | None = None

    def to_spec(self) -> NodeSpec:
        return NodeSpec(
            name=self.name,
            kind=self.kind,
            order=self.order,
            participant_id=self.participant_id,
        )


class NodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: NodeKind
    order: int
    participant_id: int | None


class FlowIn(BaseModel):
    type_id: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    nodes: list[NodeIn] = []


class FlowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class NodesIn(BaseModel):
    nodes: list[NodeIn]


class CloneRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)


class FlowOut(BaseModel):
    id: int
    type_id: int
    name: str
    description: str
    is_active: bool
    nodes: list[NodeOut] = []

    @classmethod
    def of(cls, flow: FlowInfo, nodes: tuple[NodeInfo, ...] = ()) -> FlowOut:
        return cls(
            id=flow.id,
            type_id=flow.type_id,
            name=flow.name,
            description=flow.description,
            is_active=flow.is_active,
            nodes=[NodeOut.model_validate(n) for n in nodes],
        )


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


class TodoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    type: str
    status: str
    instance_id: int | None
    created_at: datetime | None
    completed_at: datetime | None


class TodoPage(BaseModel):
    data: list[TodoOut]
    total: int


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    type: str
    status: str
    instance_id: int | None
    created_at: datetime | None
    read_at: datetime | None


class NotificationPage(BaseModel):
    data: list[NotificationOut]
    total: int


class UnreadCount(BaseModel):
    count: int


class MarkedCount(BaseModel):
    updated: int

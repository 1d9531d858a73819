"""ORM models for the OA kernel."""

from oa_kernel.models.approval import (
    ApprovalFlowModel,
    ApprovalInstanceModel,
    ApprovalNodeModel,
    ApprovalNodeRecordModel,
    ApprovalTypeModel,
)
from oa_kernel.models.audit_event import AuditAction, AuditEvent
from oa_kernel.models.business import (
    ApplicationStatus,
    Asset,
    AssetDisposal,
    AssetStatus,
    BusinessTripApplication,
    Document,
    DocumentStatus,
    LeaveApplication,
    MeetingReservation,
    OvertimeApplication,
    ProbationReview,
    ResignationApplication,
    Seal,
    SealApplication,
    SealStatus,
    TransferApplication,
    Vehicle,
    VehicleApplication,
    VehicleStatus,
)
from oa_kernel.models.inbox import (
    InboxItemType,
    Notification,
    NotificationStatus,
    Todo,
    TodoStatus,
)
from oa_kernel.models.intent import ApprovalIntentModel
from oa_kernel.models.organization import Department, Role, User, UserRole
from oa_kernel.models.sequence import SequenceCounter

__all__ = [
    "ApprovalTypeModel",
    "ApprovalFlowModel",
    "ApprovalNodeModel",
    "ApprovalInstanceModel",
    "ApprovalNodeRecordModel",
    "AuditAction",
    "AuditEvent",
    "ApplicationStatus",
    "Asset",
    "AssetDisposal",
    "AssetStatus",
    "BusinessTripApplication",
    "Document",
    "DocumentStatus",
    "LeaveApplication",
    "MeetingReservation",
    "OvertimeApplication",
    "ProbationReview",
    "ResignationApplication",
    "Seal",
    "SealApplication",
    "SealStatus",
    "TransferApplication",
    "Vehicle",
    "VehicleApplication",
    "VehicleStatus",
    "InboxItemType",
    "Notification",
    "NotificationStatus",
    "Todo",
    "TodoStatus",
    "ApprovalIntentModel",
    "Department",
    "Role",
    "User",
    "UserRole",
    "SequenceCounter",
]

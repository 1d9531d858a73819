"""Services for the approval kernel (write side)."""

from oa_kernel.services.approval_engine import ApprovalEngine
from oa_kernel.services.auditor_service import AuditorService, AuditTrace
from oa_kernel.services.catalog_service import CatalogCache, CatalogService
from oa_kernel.services.dispatcher import (
    BusinessBinding,
    DispatchContext,
    SideEffectDispatcher,
    default_bindings,
)
from oa_kernel.services.inbox_service import InboxService
from oa_kernel.services.instance_store import InstanceStore
from oa_kernel.services.intent_relay import (
    IntentRelay,
    MemoryIntentSink,
    NotificationSink,
    RelayReport,
    TodoSink,
)
from oa_kernel.services.participant_resolver import ParticipantResolver, resolve_approvers
from oa_kernel.services.sequence_service import SequenceService

__all__ = [
    "ApprovalEngine",
    "AuditTrace",
    "AuditorService",
    "BusinessBinding",
    "CatalogCache",
    "CatalogService",
    "DispatchContext",
    "InboxService",
    "InstanceStore",
    "IntentRelay",
    "MemoryIntentSink",
    "NotificationSink",
    "ParticipantResolver",
    "RelayReport",
    "SequenceService",
    "SideEffectDispatcher",
    "TodoSink",
    "default_bindings",
    "resolve_approvers",
]

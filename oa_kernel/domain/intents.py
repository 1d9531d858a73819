"""
Approval intents (``oa_kernel.domain.intents``).

Intents are the engine's only outward communication.  They are recorded in
the outbox inside the decision transaction and delivered by the intent
relay after commit, in outbox id order, at least once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class IntentKind(str, Enum):
    SUBMITTED = "submitted"
    TODO_ASSIGNED = "todo_assigned"
    TODO_WITHDRAWN = "todo_withdrawn"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Kinds addressed to the applicant rather than an approver.
APPLICANT_INTENT_KINDS: frozenset[IntentKind] = frozenset({
    IntentKind.SUBMITTED,
    IntentKind.APPROVED,
    IntentKind.REJECTED,
    IntentKind.CANCELLED,
})


@dataclass(frozen=True)
class ApprovalIntent:
    """One message to one recipient about one instance."""

    kind: IntentKind
    instance_id: int
    recipient_id: int
    title: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

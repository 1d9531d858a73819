"""Selectors for the approval kernel (read side)."""

from oa_kernel.selectors.approval_selector import ApprovalSelector
from oa_kernel.selectors.inbox_selector import NotificationSelector, TodoSelector
from oa_kernel.selectors.org_selector import SqlOrgDirectory

__all__ = [
    "ApprovalSelector",
    "NotificationSelector",
    "SqlOrgDirectory",
    "TodoSelector",
]

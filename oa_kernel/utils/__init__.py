"""Utility modules for the OA kernel."""

from oa_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload
from oa_kernel.utils.retry import is_transient, retry_transient

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "is_transient",
    "retry_transient",
]

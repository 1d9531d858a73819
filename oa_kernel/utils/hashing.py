"""
Canonical JSON and SHA-256 digests for the audit chain.

A payload digest must not change when the same logical payload is written
twice, so keys are sorted, whitespace is dropped and the few non-JSON types
the engine puts into audit payloads (enums, datetimes, tuples) have a fixed
rendering.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

GENESIS = "GENESIS"


def _encode_extra(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, tuple):
        return list(obj)
    raise TypeError(f"cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), default=_encode_extra,
    )


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON form of ``payload``."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Link hash of one audit event.

    ``prev_hash`` is the hash of the event before it in ``seq`` order; the
    first event in the chain links to ``GENESIS``.
    """
    link = (entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS)
    return _sha256("|".join(link))

"""Database layer - engine, session factory and declarative base."""

from oa_kernel.db.base import Base, SoftDeleteMixin, TimestampedBase
from oa_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampedBase",
    "create_tables",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]

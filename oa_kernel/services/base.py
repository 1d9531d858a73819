"""
BaseService -- abstract base for kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    services in the kernel layer.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The approval engine (or the
    HTTP edge for catalog and inbox writes) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for session-bound kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/paginate reads -- those belong in
          ``oa_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

"""
Module: oa_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ value objects.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from oa_kernel.domain.dtos import PageRequest


class BaseSelector(ABC):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session

    def _count(self, stmt: Select) -> int:
        return self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()

    def _page_rows(self, stmt: Select, window: PageRequest) -> list:
        return list(
            self.session.execute(
                stmt.offset(window.offset).limit(window.page_size)
            ).scalars().all()
        )

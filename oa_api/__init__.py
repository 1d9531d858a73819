"""
oa_api -- FastAPI HTTP edge of the approval engine.

Verifies bearer tokens, maps kernel error kinds onto HTTP statuses and
delegates every operation to ``oa_kernel``.  Holds no business rules.
"""

from oa_api.app import create_app

__all__ = ["create_app"]

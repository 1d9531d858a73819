"""Liveness probe."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from oa_api.deps import AppServices, get_services
from oa_kernel.utils.retry import retry_transient

router = APIRouter(tags=["health"])


@router.get("/health")
def health(services: AppServices = Depends(get_services)):
    def ping() -> int:
        session = services.session_factory()
        try:
            return session.execute(text("SELECT 1")).scalar_one()
        finally:
            session.close()

    retry_transient(ping, operation="health_check")
    return {"status": "ok"}

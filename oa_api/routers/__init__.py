"""HTTP routers."""

from oa_api.routers import approvals, catalog, health, inbox

__all__ = ["approvals", "catalog", "health", "inbox"]

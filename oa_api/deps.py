"""Request dependencies: the caller's identity and the shared services."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import BackgroundTasks, Depends, Header, Request
from sqlalchemy.orm import Session

from oa_api.auth import bearer_token, decode_token
from oa_config import Settings
from oa_kernel.db.engine import session_scope
from oa_kernel.domain.clock import Clock
from oa_kernel.exceptions import ForbiddenError
from oa_kernel.logging_config import LogContext, get_logger
from oa_kernel.selectors.org_selector import SqlOrgDirectory
from oa_kernel.services.approval_engine import ApprovalEngine
from oa_kernel.services.catalog_service import CatalogCache
from oa_kernel.services.intent_relay import IntentRelay

logger = get_logger("api.deps")


@dataclass
class AppServices:
    """Process-wide collaborators built once by ``create_app``."""

    settings: Settings
    session_factory: Callable[[], Session]
    engine: ApprovalEngine
    catalog_cache: CatalogCache
    relay: IntentRelay
    clock: Clock


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def current_user_id(
    request: Request,
    authorization: str | None = Header(default=None),
) -> int:
    services = get_services(request)
    user_id = decode_token(bearer_token(authorization), services.settings.jwt.secret)
    LogContext.set(actor_id=user_id)
    request.state.user_id = user_id
    return user_id


def catalog_admin_id(
    user_id: int = Depends(current_user_id),
    services: AppServices = Depends(get_services),
) -> int:
    """The caller id, provided the caller holds the catalog admin role."""
    role = services.settings.approval.admin_role
    with session_scope(services.session_factory) as session:
        allowed = SqlOrgDirectory(session).has_role(user_id, role)
    if not allowed:
        raise ForbiddenError(user_id, "edit the approval catalog")
    return user_id


def get_engine(services: AppServices = Depends(get_services)) -> ApprovalEngine:
    return services.engine


def _drain_outbox(relay: IntentRelay) -> None:
    try:
        relay.deliver_pending()
    except Exception:
        # Undelivered intents stay in the outbox for the next run.
        logger.exception("intent_relay_failed")


def relay_after_response(
    background_tasks: BackgroundTasks,
    services: AppServices = Depends(get_services),
) -> None:
    """Deliver outbox intents once the response has been sent.

    Background tasks only run for a successful response; a failed request
    committed nothing to deliver.
    """
    background_tasks.add_task(_drain_outbox, services.relay)

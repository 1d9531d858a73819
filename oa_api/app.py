"""
Application factory for the HTTP edge.

``create_app`` wires settings into the kernel: it initialises the
process-wide database engine, builds the shared ApprovalEngine with its
dispatcher, intent relay and catalog cache, installs the error mapping
and a request-id middleware, and mounts the routers.

The engine is built without an inline relay: write routes hand outbox
delivery to a background task that runs after the response is sent.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from fastapi import FastAPI, Request

from oa_api.deps import AppServices
from oa_api.errors import install_error_handlers
from oa_api.routers import approvals, catalog, health, inbox
from oa_config import Settings, load_settings
from oa_kernel import __version__
from oa_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from oa_kernel.domain.clock import Clock, SystemClock
from oa_kernel.logging_config import LogContext, configure_logging, get_logger
from oa_kernel.services.approval_engine import ApprovalEngine
from oa_kernel.services.catalog_service import CatalogCache
from oa_kernel.services.dispatcher import SideEffectDispatcher
from oa_kernel.services.intent_relay import IntentRelay, IntentSink

logger = get_logger("api.app")

REQUEST_ID_HEADER = "X-Request-ID"


def create_app(
    settings: Settings | None = None,
    *,
    clock: Clock | None = None,
    sinks: Iterable[IntentSink] | None = None,
    create_schema: bool = True,
    configure_logs: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: server settings; loaded from ``$OA_CONFIG`` and the
            environment when omitted.
        clock: time source shared by every service.
        sinks: intent sinks; defaults to the todo and notification sinks.
        create_schema: create missing tables on startup.
        configure_logs: install the kernel's log handler.
    """
    settings = settings or load_settings()
    clock = clock or SystemClock()

    if configure_logs:
        configure_logging(
            level=settings.server.log_level,
            human_readable=settings.server.human_readable_logs,
        )

    db_engine = init_engine_from_url(
        settings.database.dsn,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        lock_timeout=settings.database.lock_timeout_seconds,
    )
    if create_schema:
        create_tables(db_engine)
    session_factory = get_session_factory()

    cache = CatalogCache(settings.approval.cache_ttl_seconds, clock)
    relay = IntentRelay(session_factory, sinks, clock)
    engine = ApprovalEngine(
        session_factory,
        dispatcher=SideEffectDispatcher(clock=clock),
        relay=None,
        clock=clock,
        catalog_cache=cache,
        request_timeout_seconds=settings.approval.request_timeout_seconds,
    )

    app = FastAPI(title="OA Approval API", version=__version__)
    app.state.services = AppServices(
        settings=settings,
        session_factory=session_factory,
        engine=engine,
        catalog_cache=cache,
        relay=relay,
        clock=clock,
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        LogContext.clear()
        LogContext.set(correlation_id=request_id, request_path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            LogContext.clear()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    install_error_handlers(app)
    app.include_router(health.router)
    app.include_router(approvals.router)
    app.include_router(catalog.router)
    app.include_router(inbox.router)

    logger.info(
        "app_created",
        extra={"mode": settings.server.mode.value, "bind": settings.server.bind},
    )
    return app

"""
Main FastAPI application.

The lifespan owns every long-lived component: database engine and session
factory, event store, bus, dispatcher, tenant resolver and token verifier.
They are built on startup, held on ``app.state`` and torn down on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from saas_backend.api.routers import audit, health
from saas_backend.core.config import settings
from saas_backend.core.database import build_engine, build_session_factory, close_db, init_db
from saas_backend.core.security import JWTTokenVerifier
from saas_backend.events.bus import ReliableEventBus
from saas_backend.events.dispatcher import EventDispatcher
from saas_backend.events.idempotency import ConsumerIdempotencyStore
from saas_backend.events.store import EventStore
from saas_backend.models import TENANT_OWNED_MODELS
from saas_backend.observability import configure_logging, configure_tracing, setup_observability
from saas_backend.services.audit_logger import AuditTrailConsumer
from saas_backend.services.tenant_resolver import DatabaseTenantLookup, TenantContextResolver
from saas_backend.storage.tenant_scope import TenantScopeRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build components on startup and release them on shutdown."""
    logger.info(
        "Starting application",
        extra={"app_version": settings.APP_VERSION, "debug": settings.DEBUG},
    )

    engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
    await init_db(engine)
    session_factory = build_session_factory(engine)

    registry = TenantScopeRegistry.from_models(TENANT_OWNED_MODELS)
    store = EventStore(
        session_factory,
        max_retries=settings.EVENT_MAX_RETRIES,
        backoff_base_seconds=settings.EVENT_BACKOFF_BASE_SECONDS,
    )
    bus = ReliableEventBus(store)
    dispatcher = EventDispatcher(
        store,
        bus,
        ConsumerIdempotencyStore(session_factory),
        batch_size=settings.EVENT_BATCH_SIZE,
        handler_timeout=settings.EVENT_HANDLER_TIMEOUT_SECONDS,
        idle_interval=settings.EVENT_IDLE_INTERVAL_SECONDS,
        claim_timeout=settings.EVENT_CLAIM_TIMEOUT_SECONDS,
    )
    AuditTrailConsumer(
        session_factory, registry, allow_bypass=settings.TENANT_SCOPE_ALLOW_BYPASS
    ).subscribe(bus)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.tenant_registry = registry
    app.state.event_store = store
    app.state.event_bus = bus
    app.state.dispatcher = dispatcher
    app.state.tenant_resolver = TenantContextResolver(
        DatabaseTenantLookup(session_factory),
        tenant_claim=settings.TENANT_CLAIM_NAME,
        user_claim=settings.USER_CLAIM_NAME,
        header_name=settings.TENANT_HEADER_NAME,
        path_param=settings.TENANT_PATH_PARAM,
    )
    app.state.token_verifier = (
        JWTTokenVerifier(
            settings.APP_JWT_PUBLIC_KEY,
            algorithms=[settings.APP_JWT_ALGORITHM],
            audience=settings.APP_JWT_AUDIENCE,
            issuer=settings.APP_JWT_ISSUER,
        )
        if settings.APP_JWT_PUBLIC_KEY
        else None
    )

    if settings.EVENT_DISPATCHER_ENABLED:
        await dispatcher.start()

    yield

    logger.info("Shutting down application")
    await dispatcher.stop()
    if bus.fallback_size:
        # Last chance before the in-process queue is lost
        await bus.flush_fallback()
        if bus.fallback_size:
            logger.error(
                "Unpersisted events lost on shutdown",
                extra={"count": bus.fallback_size},
            )
    await close_db(engine)


def create_app() -> FastAPI:
    """Application factory."""
    configure_logging()
    configure_tracing()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Multi-tenant SaaS backend core",
        lifespan=lifespan,
        debug=settings.DEBUG,
    )

    # Before other middleware so every request is instrumented
    setup_observability(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.status_code,
                    "message": exc.detail,
                    "type": "http_exception",
                }
            },
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "code": 422,
                    "message": "Validation error",
                    "type": "validation_error",
                    "details": exc.errors(),
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            extra={"error": str(exc), "endpoint": request.url.path},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": 500,
                    "message": "Internal server error",
                    "type": "internal_error",
                }
            },
        )

    app.include_router(health.router, prefix=settings.API_V1_PREFIX)
    app.include_router(audit.router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()

"""
Vault Orders - Main Application
FastAPI Entry Point for the order, payment and claim lifecycle
"""

from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vault_orders.config import Settings, settings as default_settings
from vault_orders.database import create_db_engine, create_session_factory, init_db
from vault_orders.errors import LifecycleError
from vault_orders.middleware import CorrelationIdMiddleware, get_correlation_id
from vault_orders.routers import admin_router, claims_router, mint_router, orders_router, webhooks_router
from vault_orders.scheduler import start_scheduler, stop_scheduler
from vault_orders.services.claim_tokens import ClaimTokenService
from vault_orders.services.clock import Clock, now_ms
from vault_orders.services.idempotency import IdempotencyService
from vault_orders.services.kv_store import KVStore
from vault_orders.services.monitoring import init_sentry, setup_logging
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator
from vault_orders.services.payments import build_payment_registry
from vault_orders.services.repository import OrderClaimRepository
from vault_orders.services.webhook_verifier import WebhookAuthenticator

VERSION = "0.1.0"

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
logger = structlog.get_logger()


def build_coordinator(
    settings: Settings,
    store: KVStore,
    http_client: Optional[httpx.Client] = None,
    clock: Clock = now_ms
) -> OrderLifecycleCoordinator:
    """Wire the lifecycle services on top of one KV store"""
    return OrderLifecycleCoordinator(
        repository=OrderClaimRepository(store, orders_index_limit=settings.orders_index_limit),
        idempotency=IdempotencyService(
            store,
            ttl_seconds=settings.idempotency_ttl_seconds,
            lease_seconds=settings.idempotency_lease_seconds
        ),
        tokens=ClaimTokenService.from_settings(settings, clock=clock),
        payments=build_payment_registry(settings, http_client=http_client),
        settings=settings,
        clock=clock
    )


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.Client] = None,
    clock: Clock = now_ms
) -> FastAPI:
    """
    Application factory.

    Every app gets its own engine, KV store and coordinator on ``app.state``.

    Args:
        settings: Settings to use (defaults to environment settings)
        http_client: Shared httpx client for provider calls (tests inject a mock transport)
        clock: Epoch-millisecond clock
    """
    settings = settings or default_settings

    app = FastAPI(
        title="Vault Orders",
        description="Order, payment webhook and claim lifecycle for vault relic purchases",
        version=VERSION,
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None,
    )
    app.add_middleware(CorrelationIdMiddleware)

    engine = create_db_engine(settings.database_url)
    store = KVStore(create_session_factory(engine), clock=clock)
    coordinator = build_coordinator(settings, store, http_client=http_client, clock=clock)

    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.coordinator = coordinator
    app.state.authenticator = WebhookAuthenticator(settings, paypal=coordinator.payments.paypal, clock=clock)
    app.state.scheduler = None

    # Register routers
    app.include_router(orders_router)
    app.include_router(webhooks_router)
    app.include_router(claims_router)
    app.include_router(mint_router)
    app.include_router(admin_router)

    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_failed",
            path=request.url.path,
            error=exc.code,
            message=exc.message,
            correlation_id=get_correlation_id()
        )
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_validation_failed", path=request.url.path)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": "Invalid request",
                "details": jsonable_encoder(exc.errors()),
            }
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_error",
            path=request.url.path,
            error=str(exc),
            correlation_id=get_correlation_id(),
            exc_info=True
        )
        return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})

    @app.on_event("startup")
    async def startup_event():
        """Application Startup"""
        setup_logging()
        init_sentry(settings)
        logger.info("startup", environment=settings.environment)

        init_db(engine)
        logger.info("database_initialized")

        app.state.scheduler = start_scheduler(settings, store)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application Shutdown"""
        logger.info("shutdown")
        stop_scheduler(app.state.scheduler)
        coordinator.payments.close()
        engine.dispose()

    @app.get("/")
    async def root():
        """Root Endpoint"""
        return {
            "message": "Vault Orders API",
            "version": VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """Health Check Endpoint"""
        scheduler = app.state.scheduler
        health_status = {
            "status": "healthy",
            "environment": settings.environment,
            "services": {
                "api": "running",
                "scheduler": "running" if scheduler and scheduler.running else "stopped",
                "database": engine.dialect.name,
                "payments": {
                    name.value: "configured" if provider.configured else "not_configured"
                    for name, provider in coordinator.payments.providers.items()
                },
            }
        }

        return JSONResponse(
            content=health_status,
            status_code=200
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "vault_orders.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.environment == "development"
    )

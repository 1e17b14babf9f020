import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.analytics import router as analytics_router
from .api.v1.health import router as health_router
from .api.v1.notifications import router as notifications_router
from .api.v1.orders import router as orders_router
from .api.v1.payouts import router as payouts_router
from .api.v1.returns import router as returns_router
from .core.database import database_manager
from .core.events import close_events, init_events, start_event_consumers
from .core.settings import get_settings
from .middleware.auth import setup_fulfillment_auth_middleware
from .middleware.error import setup_fulfillment_error_handling
from .middleware.security import setup_fulfillment_request_validation_middleware
from .utils.logging import setup_fulfillment_logging as setup_logging

settings = get_settings()

environment = settings.ENVIRONMENT.lower()
enable_file_logging = environment in ["production", "staging"]

logger = setup_logging(
    "fulfillment_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=enable_file_logging,
)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@asynccontextmanager
async def lifespan(app: FastAPI):
    started = time.perf_counter()
    logger.info(
        "Starting fulfillment service",
        extra={
            "environment": environment,
            "debug_mode": settings.DEBUG,
            "file_logging_enabled": enable_file_logging,
            "service_version": settings.APP_VERSION,
        },
    )

    try:
        step = time.perf_counter()
        await database_manager.create_tables()
        database_ms = _elapsed_ms(step)

        # Kafka problems degrade to logged events, they never abort startup
        step = time.perf_counter()
        await init_events()
        await start_event_consumers()
        events_ms = _elapsed_ms(step)
    except Exception as e:
        logger.error(
            "Failed to start fulfillment service",
            exc_info=True,
            extra={"startup_duration_ms": _elapsed_ms(started), "error_type": type(e).__name__},
        )
        raise

    logger.info(
        "Fulfillment service started",
        extra={
            "total_startup_duration_ms": _elapsed_ms(started),
            "database_init_ms": database_ms,
            "event_init_ms": events_ms,
        },
    )

    yield

    stopping = time.perf_counter()
    try:
        await close_events()
        await database_manager.close()
    except Exception as e:
        logger.error(
            "Error during fulfillment service shutdown",
            exc_info=True,
            extra={"error_type": type(e).__name__},
        )
        raise
    logger.info("Fulfillment service stopped", extra={"shutdown_duration_ms": _elapsed_ms(stopping)})


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Middleware added last runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_CREDENTIALS,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )

    setup_fulfillment_request_validation_middleware(app)
    setup_fulfillment_auth_middleware(app)
    setup_fulfillment_error_handling(app)

    routers_info: list[dict[str, Any]] = []

    app.include_router(health_router, tags=["Health"])
    routers_info.append({"router": "health", "prefix": "", "tags": ["Health"]})

    for name, router, tag in (
        ("orders", orders_router, "Orders"),
        ("returns", returns_router, "Returns"),
        ("payouts", payouts_router, "Settlement"),
        ("notifications", notifications_router, "Notifications"),
        ("analytics", analytics_router, "Analytics"),
    ):
        app.include_router(router, prefix="/api/v1", tags=[tag])
        routers_info.append({"router": name, "prefix": "/api/v1", "tags": [tag]})

    logger.info(
        "API routes configured",
        extra={"total_routers": len(routers_info), "routers": routers_info},
    )

    return app


app = create_app()

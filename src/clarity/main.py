"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clarity.api.errors import register_exception_handlers
from clarity.api.middleware import RequestIDMiddleware, RequestLoggingMiddleware
from clarity.api.router import api_router
from clarity.config import settings
from clarity.database import close_db
from clarity.services.auth import get_session_service
from clarity.services.notifier import BackgroundNotifier

logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking
if settings.sentry_dsn:
    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup: schema is managed by Alembic migrations (or `clarity db init`)
    yield
    # Shutdown: let queued code deliveries finish before the loop goes away
    notifier = get_session_service().notifier
    if isinstance(notifier, BackgroundNotifier):
        await notifier.drain()
    await close_db()


app = FastAPI(
    title="Clarity API",
    description="Personal health record backend: passwordless sign-in and sessions",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
    openapi_url="/api/openapi.json" if settings.debug_enabled else None,
)

register_exception_handlers(app)

# Innermost first: logging runs inside the request ID context
app.add_middleware(RequestLoggingMiddleware)  # type: ignore[arg-type]
app.add_middleware(RequestIDMiddleware)  # type: ignore[arg-type]

app.add_middleware(
    CORSMiddleware,  # type: ignore[arg-type]
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    from clarity.logging import get_uvicorn_log_config, setup_logging

    setup_logging()
    uvicorn.run(
        "clarity.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_config=get_uvicorn_log_config(),
    )

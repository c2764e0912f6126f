"""
Hookline - reliable webhook delivery for integrators

FastAPI application entry point.
"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Import observability modules
from hookline.config import settings
from hookline.logging_config import configure_logging, get_logger
from hookline.sentry_config import configure_sentry
from hookline.middleware.logging import LoggingMiddleware
from hookline.routes.metrics import router as metrics_router

# Import route modules
from hookline.routes.webhooks import router as webhooks_router
from hookline.services.webhook_service import get_dispatcher
from hookline.worker import build_scheduler

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the retry scheduler in-process when enabled; drain sends on shutdown."""
    scheduler = None
    scheduler_task = None

    if settings.RUN_RETRY_SCHEDULER:
        scheduler = build_scheduler()
        scheduler_task = asyncio.create_task(scheduler.run_forever())

    yield

    if scheduler is not None:
        scheduler.stop()
        await scheduler_task

    await get_dispatcher().drain()
    log.info("shutdown_complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Signed, retried webhook delivery for integrator API keys",
    lifespan=lifespan,
)

# Request logging
app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include webhook routes
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "retry_scheduler": "in-process" if settings.RUN_RETRY_SCHEDULER else "external"
    }

"""FastAPI application entry point"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sellify.core.config import settings, validate_environment
from sellify.core.logging import setup_logging
from sellify.core.middleware import access_log_middleware, global_exception_handler, setup_cors_middleware
from sellify.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy, setup_otel_logging
from sellify.core.stripe_client import init_stripe_client
from sellify.db.session import engine, init_db

# Import routers
from sellify.api import analytics, connect, pages, submissions, webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    validate_environment()

    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    init_stripe_client()

    from sellify.tasks.cleanup import cleanup_task
    cleanup = asyncio.create_task(cleanup_task())
    logger.info("Cleanup task started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    cleanup.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup


# Create FastAPI app
app = FastAPI(
    title="Sellify Backend",
    description="Checkout pages with Stripe Connect payments",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)

setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(webhooks.router)
app.include_router(connect.router)
app.include_router(pages.router)
app.include_router(submissions.router)
app.include_router(analytics.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

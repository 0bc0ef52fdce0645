"""
CivicTrack - Main Application Entry Point
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
from slowapi.errors import RateLimitExceeded

from civictrack.api.v1.router import api_router
from civictrack.bootstrap import seed_departments
from civictrack.core.config import settings
from civictrack.core.database import init_db
from civictrack.core.exceptions import register_exception_handlers
from civictrack.core.logging import RequestContextMiddleware, setup_logging
from civictrack.core.metrics import MetricsMiddleware
from civictrack.core.rate_limiter import RateLimitMiddleware, limiter, rate_limit_handler
from civictrack.core.redis import close_redis, get_redis
from civictrack.services.realtime import configure_realtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown."""
    # Startup
    setup_logging()
    await init_db()
    await seed_departments()

    listener = None
    if settings.REALTIME_REDIS_FANOUT:
        channel = configure_realtime(await get_redis())
        listener = asyncio.create_task(channel.listen_forever())
    else:
        configure_realtime()
    logger.info("CivicTrack started (environment=%s)", settings.ENVIRONMENT)

    yield

    # Shutdown
    try:
        if listener is not None:
            listener.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await listener
    finally:
        await close_redis()


app = FastAPI(
    title="CivicTrack",
    description="Citizen issue reporting, department routing and realtime notifications",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
register_exception_handlers(app)

# Middleware
app.add_middleware(RateLimitMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Mount Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "civictrack"}


@app.get("/")
async def root():
    """Root endpoint with system information."""
    return {
        "service": "CivicTrack",
        "version": "1.0.0",
        "docs": "/api/docs",
        "health": "/health",
        "metrics": "/metrics",
    }

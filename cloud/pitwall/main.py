"""
Pitwall Race Clock - FastAPI Application

Serves the time authority, the race record and its change feed.
"""
import logging
from contextlib import asynccontextmanager
import structlog

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from pitwall.config import get_settings
from pitwall.database import init_db
from pitwall import redis_client
from pitwall.routes import clock, race_state, stream

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_public}/minute"],
    storage_uri=settings.rate_limit_storage_uri,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown."""
    logger.info("Starting Pitwall Race Clock", version=settings.app_version)
    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Pitwall Race Clock")
    await redis_client.close_redis()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Server-authoritative race clock: time authority, race record and change feed",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "X-Admin-Token", "Last-Event-ID"],
)

# Include routers
app.include_router(clock.router)
app.include_router(race_state.router)
app.include_router(stream.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "time": "/api/v1/time",
        "race_state": "/api/v1/race-state",
        "stream": "/api/v1/race-state/stream",
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent internal detail leakage."""
    logger.exception("Unhandled exception", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pitwall.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )

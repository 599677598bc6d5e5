"""
Campus Market API - Main Application Entry Point

A student marketplace where owners post rooms, ticket lots, rides and
lost/found items, and other students request them:
- Owner-driven request/accept workflow shared by every listing kind
- Capacity consumed atomically on acceptance, so listings are never oversold
- Hourly sweeper expiring past rides/tickets and purging stale requests
- Redis caching of the browse view, structured logging, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import InterfaceError, OperationalError

from campus_market.core.config import get_settings
from campus_market.core.exceptions import ServiceUnavailableError
from campus_market.core.logging import setup_logging, get_logger
from campus_market.core.metrics import metrics_endpoint
from campus_market.core.scheduler import init_scheduler, shutdown_scheduler
from campus_market.api.router import api_router
from campus_market.api.middleware import RequestLoggingMiddleware
from campus_market.services.cache_service import get_redis, close_redis, get_cache_stats

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    if settings.SWEEPER_ENABLED:
        init_scheduler()

    yield

    shutdown_scheduler()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Campus marketplace API with concurrency-safe request acceptance",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def database_unavailable_handler(request: Request, exc: Exception):
    logger.error("database_unavailable", error=str(exc))
    return await http_exception_handler(
        request, ServiceUnavailableError("The database is temporarily unavailable, please retry")
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

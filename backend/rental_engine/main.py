"""
Vehicle Rental Booking API - Main Application Entry Point

The booking lifecycle engine behind a thin HTTP surface:
- Booking state machine with an append-only status history
- Transactional booking creation and check-in / check-out
- Concurrency-safe driver assignment with optimistic locking
- Post-commit notifications and broadcasts through an outbox
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rental_engine.api.errors import register_exception_handlers
from rental_engine.api.middleware import RequestLoggingMiddleware
from rental_engine.api.router import api_router
from rental_engine.core.config import get_settings
from rental_engine.core.logging import get_logger, setup_logging
from rental_engine.core.metrics import metrics_endpoint
from rental_engine.db.session import AsyncSessionLocal, engine
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.infrastructure.redis_client import close_redis, redis_health
from rental_engine.services.scheduler import build_scheduler
from rental_engine.services.strategy_factory import build_collaborators

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    # Redis-backed collaborators when reachable, log-only / in-memory otherwise
    outbox, presence = await build_collaborators()
    await outbox.start()

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler(UnitOfWork(AsyncSessionLocal, outbox), presence)
        scheduler.start()
        logger.info("scheduler_started", jobs=[job.id for job in scheduler.get_jobs()])

    yield

    # Cleanup
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await outbox.stop()
    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Vehicle rental booking lifecycle engine",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_health(),
    }


@app.get("/metrics", tags=["Health"])
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }

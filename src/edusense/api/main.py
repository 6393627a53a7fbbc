"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from edusense.api.routes import ask, doubts, health, media
from edusense.auth.middleware import AuthMiddleware
from edusense.core.config import get_settings
from edusense.core.logging import configure_logging
from edusense.db.database import close_db, init_db
from edusense.llm.client import shutdown_generation_client
from edusense.rag.vector_store import get_vector_store

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    # In production, use Alembic migrations instead
    if settings.environment == "development":
        try:
            await init_db()
            logger.info("Database initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    try:
        if await get_vector_store().ensure_collection():
            logger.info("Vector collection created")
    except Exception as e:
        logger.warning(f"Vector collection check skipped: {e}")

    health.set_startup_complete()
    logger.info("Startup complete - ready to accept requests")

    yield

    logger.info("Shutting down...")
    await shutdown_generation_client()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Academic question answering over uploaded study material",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Auth middleware (validates JWTs, sets request.state.user)
app.add_middleware(AuthMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health check routes (no auth required - public paths)
app.include_router(health.router, tags=["Health"])

# API routes (auth required)
app.include_router(media.router, prefix=settings.api_prefix, tags=["Media"])
app.include_router(ask.router, prefix=settings.api_prefix, tags=["Ask"])
app.include_router(doubts.router, prefix=settings.api_prefix, tags=["Doubts"])

# Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else None,
        "health": "/health/ready",
    }

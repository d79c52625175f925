"""
Listing Sync API

FastAPI application hosting the worker results webhook.

Run with:
    uvicorn api.app:app --reload
"""

import logging
import sys

from fastapi import FastAPI

from listing_sync import __version__
from listing_sync.database import init_db, check_db_connection
from listing_sync.utils.config import get_settings

from api.results import router as results_router, get_notifier

settings = get_settings()

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="Listing Sync",
    description="Multi-strategy evaluation results for listing SEO analysis",
    version=__version__,
)

app.include_router(results_router)


# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    await get_notifier().close()


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Listing Sync"}


@app.get("/api/health")
async def health():
    """Detailed health check including database status."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "database": "connected" if check_db_connection() else "disconnected",
    }

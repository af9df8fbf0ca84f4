"""
Outreach Sync Service - FastAPI Application

Keeps local LinkedIn connections and messages in step with the Unipile API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.scheduler import JobScheduler
from .db.connection import close_db, init_db
from .db.repository import SyncStore
from .providers.unipile import UnipileClient
from .routes import sync
from .sync.engine import SyncEngine

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Outreach Sync Service...")
    logger.info(f"Environment: {settings.environment}")

    try:
        pool = await init_db()
        logger.info("Database connection established")
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise

    jobs = JobScheduler(default_timeout_seconds=settings.job_timeout_seconds)
    engine = SyncEngine(SyncStore.from_pool(pool), UnipileClient(), jobs, settings=settings)

    logger.info("Starting sync engine...")
    await engine.start()
    app.state.sync_engine = engine

    yield

    # Shutdown
    logger.info("Shutting down Outreach Sync Service...")
    await engine.shutdown()
    app.state.sync_engine = None
    await close_db()
    logger.info("Database connection closed")


app = FastAPI(
    title="Outreach Sync Service",
    description="Adaptive LinkedIn dataset synchronization",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sync.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.service_name}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "outreach_sync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )

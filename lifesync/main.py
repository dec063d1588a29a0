"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lifesync import __version__
from lifesync.config import get_settings
from lifesync.database import close_db, get_session_factory, init_db
from lifesync.services.runtime import SyncRuntime
from lifesync.api import api_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting LifeSync API...")

    await init_db()
    logger.info("Database initialized")

    app.state.runtime = SyncRuntime(get_session_factory())
    expired = await app.state.runtime.ledger.expire_stale()
    if expired:
        logger.info(f"Released {expired} sync job(s) left over from a previous run")

    yield

    # Shutdown
    logger.info("Shutting down LifeSync API...")

    await app.state.runtime.shutdown()
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="LifeSync API",
    description="Integration sync engine for tasks and calendar events",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lifesync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )

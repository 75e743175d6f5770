"""
Main FastAPI application for the Podcast Booking Cache.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from .config import ConfigurationError, settings
from .api.routes import router, get_cache_service
from .database import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Shared podcast metadata cache behind the client, prospect and outreach dashboards",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"❌ Configuration error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


@app.on_event("startup")
async def startup_event():
    """
    Application startup event handler.
    Performs initialization tasks.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Initialize database
    logger.info("Initializing database...")
    init_db()
    logger.info("✅ Database initialized")

    # Validate settings
    if not settings.validate():
        logger.warning("Some configuration settings are missing or invalid")

    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Application shutdown event handler.
    Waits for background cache-hit and embedding jobs before exiting.
    """
    cache = get_cache_service()
    await cache.drain_pending_hits()
    await cache.drain_pending_embeddings()
    logger.info("Shutting down application")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "booking.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )

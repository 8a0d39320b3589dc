"""
Main FastAPI application for the IRM Fusion Viewer
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from .middleware.conditional_gzip import ConditionalGZipMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .config import settings
from .api import viewer
from .models.schemas import HealthResponse

# Configure logging
logging.basicConfig(
    level  = getattr(logging, settings.log_level.upper()),
    format = settings.log_format
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # FastAPI app startup
    logger.info(f"Starting {settings.app_name}, version {settings.app_version}")
    logger.info(f"Processing backend: {settings.backend_url}")
    logger.info(f"Debug mode: {settings.debug}")

    yield

    # FastAPI app shutdown
    logger.info(f"Shutting down {settings.app_name}, closing {len(viewer.sessions)} sessions")
    viewer.sessions.close_all()
    viewer.backend_client.close()

# Create FastAPI application
app = FastAPI(
    title       = settings.app_name,
    version     = settings.app_version,
    description = settings.app_description,
    docs_url    = "/docs" if settings.debug else None,
    redoc_url   = "/redoc" if settings.debug else None,
    lifespan    = lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins     = settings.cors_origins,
    allow_credentials = True,
    allow_methods     = ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers     = ["*"],
)

# Gzip JSON payloads (isosurface point clouds, state); PNG slices are left alone.
app.add_middleware(ConditionalGZipMiddleware, minimum_size=settings.gzip_minimum_size)

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    reachable = await run_in_threadpool(viewer.backend_client.health)
    return HealthResponse(
        status            = "healthy",
        version           = settings.app_version,
        backend_reachable = reachable,
        sessions          = len(viewer.sessions),
    )

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Documentation disabled in production"
    }

app.include_router(viewer.router, tags=["viewer"])

if __name__ == "__main__":
    uvicorn.run(
        "irmviewer.main:app",
        host      = settings.host,
        port      = settings.port,
        reload    = settings.debug,
        log_level = settings.log_level.lower()
    )

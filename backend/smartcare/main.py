"""
Smart Care Video Rooms Backend - Main Application

This is the entry point for the FastAPI application.
It handles:
- REST API endpoints (room creation, invitation, revocation, lookups)
- Redis connection lifecycle for the document store
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime, UTC

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartcare.api import router as api_router
from smartcare.config.redis import get_redis, close_redis

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # === STARTUP ===
    logger.info("🚀 Starting Smart Care video rooms backend...")

    await get_redis()
    logger.info("✅ Redis connected")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🛑 Shutting down...")
    await close_redis()


app = FastAPI(
    title="Smart Care Video Rooms",
    description="Peer-to-peer telehealth video rooms signaled through a real-time document store",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Smart Care Video Rooms",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
    }

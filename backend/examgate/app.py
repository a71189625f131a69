"""
ExamGate FastAPI application.

Exam registration, access control, attempt lifecycle and result publication.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from . import __version__
from .config.settings import settings
from .dependencies import build_services
from .repositories import (
    Repositories,
    build_memory_repositories,
    build_mongo_repositories,
    create_indexes,
)
from .routes.admin_routes import create_admin_routes
from .routes.exam_routes import create_exam_routes
from .utils import utc_now

logger = logging.getLogger(__name__)

VERSION = __version__


def create_app(
    repositories: Optional[Repositories] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        repositories: Pre-built repositories; when omitted the lifespan builds
            them from ``settings.REPOSITORY_BACKEND``
        clock: Source of the current time for request handlers

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """FastAPI lifespan context manager for startup/shutdown."""
        client = None

        # STARTUP
        logger.info("ExamGate backend starting up")
        try:
            settings.validate()
            logger.info("Settings validated")

            repos = repositories
            if repos is None and settings.REPOSITORY_BACKEND == "memory":
                repos = build_memory_repositories()
                logger.info("Using in-memory repositories")
            elif repos is None:
                client = AsyncIOMotorClient(
                    settings.MONGODB_URL,
                    maxPoolSize=50,
                    serverSelectionTimeoutMS=5000,
                    tz_aware=True
                )

                # Test connection
                await client.server_info()
                db = client[settings.DATABASE_NAME]
                logger.info(f"Connected to MongoDB: {settings.DATABASE_NAME}")

                await create_indexes(db)
                logger.info("Database indexes created")

                repos = build_mongo_repositories(db)

            app.state.repos = repos
            app.state.services = build_services(repos, settings)
            app.state.backend = "custom" if repositories is not None else settings.REPOSITORY_BACKEND
            logger.info("Application startup complete")

        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        # SHUTDOWN
        logger.info("Shutting down")
        if client is not None:
            client.close()
            logger.info("Database connection closed")

    app = FastAPI(
        title="ExamGate API",
        description="Exam access control and attempt lifecycle",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.clock = clock or utc_now

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_exam_routes())
    app.include_router(create_admin_routes())

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "backend": getattr(app.state, "backend", None)
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": "ExamGate",
            "version": VERSION,
            "docs": "/docs",
            "health": "/api/health"
        }

    return app

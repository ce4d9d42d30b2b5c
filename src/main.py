"""
Main entry point for the FastAPI application.
Configures lifespan events and mounts routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import router as api_router
from src.config.settings import settings
from src.core.errors import AuthError
from src.services.session import chat_session

# Setup Logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Disable these warnings as they are false positives caused by fasapi syntax
# pylint: disable=redefined-outer-name
# pylint: disable=unused-argument
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application Lifecycle Manager.
    Handles startup (identity bootstrap) and shutdown (listeners and subscription teardown).
    """
    logger.info("Starting %s...", settings.app_name)

    try:
        await chat_session.start()
    except AuthError as e:
        # Without an identity nothing else activates, the API keeps answering 401
        logger.error("Identity bootstrap failed: %s", e)

    yield

    logger.info("Shutting down %s...", settings.app_name)
    await chat_session.close()


def create_app() -> FastAPI:
    """Factory to create the app."""
    application = FastAPI(
        title=settings.app_name,
        description="Lovebirds Chat session API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict this
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    application.include_router(api_router, prefix="/api")

    return application


app = create_app()

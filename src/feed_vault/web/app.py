# ABOUTME: FastAPI application factory for serving archived images.
# ABOUTME: Archived article HTML points its <img src> at this app's image route.

import structlog
from fastapi import FastAPI

from feed_vault.config import Settings, get_settings
from feed_vault.services.images import ImageStorage

logger = structlog.get_logger()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    app = FastAPI(
        title="feed-vault",
        description="Archived article image server",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.storage = ImageStorage.from_settings(settings)

    from feed_vault.web.routes import build_router

    app.include_router(build_router(settings.image_url_prefix))
    logger.info("app_created", image_prefix=settings.image_url_prefix)

    return app

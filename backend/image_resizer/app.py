"""
FastAPI application factory.

The orchestrator is built once per app from an immutable Settings snapshot
and stored on app.state; the routes pull it from there.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .config import Settings
from .orchestrator import RequestOrchestrator
from .routes_fastapi import router

logger = logging.getLogger(__name__)


def create_app(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Build the image resizer app.

    Args:
        settings: Loaded configuration
        http_client: Optional client for origin pulls (closed by the caller)
    """
    orchestrator = RequestOrchestrator.from_settings(settings, http_client=http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[App] Cache root: {settings.storage}")
        yield
        await orchestrator.close()

    app = FastAPI(title="Image Resizer", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app

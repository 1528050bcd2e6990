"""
FastAPI application entrypoint for the HS code analysis agent.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hscode_agent.api.routes import router as api_router
from hscode_agent.core.config import get_settings
from hscode_agent.core.logging import configure_logging
from hscode_agent.dependencies import get_classification_client, get_task_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Pump the deferred-task scheduler while the app is serving."""
    settings = get_settings()
    pump = asyncio.create_task(
        get_task_scheduler().run_forever(settings.cache.scheduler_tick_seconds)
    )
    logger.info("Started scheduler pump (every %ss)", settings.cache.scheduler_tick_seconds)
    try:
        yield
    finally:
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump
        await get_classification_client().aclose()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="HS Code Analysis Agent",
        version="0.1.0",
        description="REST API for interactive HS code classification sessions.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]

"""HTTP surface for sync triggers and webhooks."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import deps, sync, webhooks

logger = logging.getLogger(__name__)


def create_app(services):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down mirrorsync services")
        services.close()

    app = FastAPI(
        title="mirrorsync",
        description="Delta sync and webhook lifecycle for Microsoft Graph mirrors",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.include_router(sync.router)
    app.include_router(webhooks.router)

    @app.get("/")
    def health_check():
        return {"status": "ok"}

    return app


__all__ = ["create_app", "deps", "sync", "webhooks"]

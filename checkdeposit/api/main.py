"""FastAPI application.

Assembles the health and pipeline routers.  ``checkdeposit/main.py``
re-exports the app object for ASGI servers.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from checkdeposit.api.routes.health import router as health_router
from checkdeposit.api.routes.pipeline import router as pipeline_router
from checkdeposit.core.logging import setup_logging
from checkdeposit.core.settings import get_settings


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    yield


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(pipeline_router)

"""SyncMyFit API — FastAPI application entry point.

Run locally:
    uvicorn syncmyfit.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from syncmyfit.config import get_settings
from syncmyfit.dependencies import AppServices, build_services
from syncmyfit.errors import SyncMyFitError
from syncmyfit.routers import auth, health, sync

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("syncmyfit")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger("syncmyfit").setLevel(settings.log_level.upper())
    logger.info(
        "Starting %s API v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    services: AppServices | None = getattr(app.state, "services", None)
    if services is None:
        services = build_services(settings)
        app.state.services = services

    state = await services.auth.restore_session()
    logger.info("Fitbit session: %s", state.value)
    yield
    await services.aclose()
    logger.info("SyncMyFit API shut down")


# ---------- Error mapping ----------

async def syncmyfit_error_handler(request: Request, exc: SyncMyFitError) -> JSONResponse:
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": exc.user_message, "error": type(exc).__name__},
    )


# ---------- App factory ----------

def create_app(services: AppServices | None = None) -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="SyncMyFit API",
        description="Fitbit login, token lifecycle and daily health data sync.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_exception_handler(SyncMyFitError, syncmyfit_error_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(sync.router)

    return app


app = create_app()

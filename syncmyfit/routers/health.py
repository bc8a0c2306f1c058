"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from syncmyfit.dependencies import Services

router = APIRouter(tags=["system"])
logger = logging.getLogger("syncmyfit.health")


@router.get("/health")
async def health_check(services: Services) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports the Fitbit session state and the last sync time.
    """
    settings = services.settings
    status = services.status.current
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "fitbit_session": services.auth.state.value.value,
        "last_synced_at": status.last_synced_at.isoformat() if status.last_synced_at else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

"""Sync endpoints: run a sync, read the sync status."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from syncmyfit.dependencies import Services
from syncmyfit.errors import SyncError, SyncInProgressError
from syncmyfit.models.api import SyncReportRead, SyncStatusRead

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("syncmyfit.sync")


@router.post("", response_model=SyncReportRead)
async def run_sync(services: Services) -> Any:
    """Fetch today's Fitbit metrics and write them to the health store."""
    try:
        report = await services.orchestrator.sync_all()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=exc.user_message) from exc
    except SyncError as exc:
        raise HTTPException(status_code=502, detail=exc.user_message) from exc
    return SyncReportRead.from_report(report)


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(services: Services) -> Any:
    return SyncStatusRead.from_status(
        services.status.current, running=services.orchestrator.running
    )

"""Sync API endpoints."""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from trackit.api.errors import to_http_exception
from trackit.core.errors import TrackitError
from trackit.core.runtime import Runtime, get_runtime
from trackit.schemas.responses import (
    ConnectivityRequest,
    SyncLogResponse,
    SyncStateResponse,
    SyncTriggerResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


async def _run_sync_in_background(runtime: Runtime):
    """Background task to run a manual sync pass."""
    try:
        await runtime.orchestrator.perform_sync(trigger="manual")
    except TrackitError as e:
        logger.error(f"Manual sync failed: {e}")


@router.post("", response_model=SyncTriggerResponse)
async def trigger_sync(background_tasks: BackgroundTasks, runtime: Runtime = Depends(get_runtime)):
    """Trigger a manual sync pass."""
    if runtime.orchestrator.state.value.is_syncing:
        return SyncTriggerResponse(message="Sync already in progress", started=False)

    background_tasks.add_task(_run_sync_in_background, runtime)
    return SyncTriggerResponse(message="Sync started", started=True)


@router.get("/status", response_model=SyncStateResponse)
async def sync_status(runtime: Runtime = Depends(get_runtime)):
    """Get the aggregate sync state."""
    return SyncStateResponse.model_validate(runtime.orchestrator.state.value)


@router.post("/connectivity", response_model=SyncStateResponse)
async def set_connectivity(body: ConnectivityRequest, runtime: Runtime = Depends(get_runtime)):
    """Report a connectivity change observed by the device."""
    runtime.orchestrator.set_online(body.online)
    return SyncStateResponse.model_validate(runtime.orchestrator.state.value)


@router.post("/clear-error", response_model=SyncStateResponse)
async def clear_error(runtime: Runtime = Depends(get_runtime)):
    runtime.orchestrator.clear_error()
    return SyncStateResponse.model_validate(runtime.orchestrator.state.value)


@router.get("/history", response_model=list[SyncLogResponse])
async def sync_history(limit: int = Query(20, ge=1, le=200), runtime: Runtime = Depends(get_runtime)):
    """Most recent sync passes, newest first."""
    try:
        passes = await runtime.orchestrator.recent_passes(limit)
    except TrackitError as e:
        raise to_http_exception(e)
    return [SyncLogResponse.model_validate(p) for p in passes]

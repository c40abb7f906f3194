"""Entry queue API endpoints used by the UI to record and delete data."""

import logging
import os
import uuid
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException

from trackit.api.errors import to_http_exception
from trackit.core.errors import TrackitError
from trackit.core.runtime import Runtime, get_runtime
from trackit.models.metric_types import METRIC_TYPES, metric_type_for_id, metric_type_id
from trackit.models.sync import ImagePayload, MetricPayload, SyncEntry, SyncStatus, to_iso8601_utc
from trackit.schemas.responses import (
    EntryResponse,
    ImageEntryRequest,
    MessageResponse,
    MetricEntryRequest,
    MetricTypeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/entries", tags=["entries"])


def _entry_response(entry: SyncEntry) -> EntryResponse:
    return EntryResponse(
        local_id=entry.local_id,
        kind=entry.kind.value,
        status=entry.status.value,
        server_id=entry.server_id,
        payload=asdict(entry.payload),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        last_sync_attempt=entry.last_sync_attempt,
        has_deferred_edit=entry.has_deferred_edit,
    )


@router.get("", response_model=list[EntryResponse])
async def list_entries(status: SyncStatus | None = None, runtime: Runtime = Depends(get_runtime)):
    """List queued entries, oldest first, optionally filtered by status."""
    try:
        entries = await runtime.queue.all_entries()
    except TrackitError as e:
        raise to_http_exception(e)
    return [_entry_response(e) for e in entries if status is None or e.status == status]


@router.get("/types", response_model=list[MetricTypeResponse])
async def list_metric_types():
    """Metrics that are synced, with their server type ids."""
    return [MetricTypeResponse.model_validate(m) for m in METRIC_TYPES]


@router.post("/metrics", response_model=EntryResponse, status_code=201)
async def enqueue_metric(body: MetricEntryRequest, runtime: Runtime = Depends(get_runtime)):
    """Record (or edit, when local_id is known) a metric value."""
    type_id = body.metric_type_id
    if body.metric_name is not None:
        type_id = metric_type_id(body.metric_name)
        if type_id is None:
            raise HTTPException(status_code=400, detail=f"Metric '{body.metric_name}' is not synced")
    elif metric_type_for_id(type_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown metric type id {type_id}")

    payload = MetricPayload(
        metric_type_id=type_id,
        value=body.value,
        date=to_iso8601_utc(body.date),
        is_apple_health=body.is_apple_health,
    )
    try:
        entry = await runtime.queue.enqueue_metric(body.local_id or uuid.uuid4().hex, payload)
    except TrackitError as e:
        raise to_http_exception(e)
    return _entry_response(entry)


@router.post("/images", response_model=EntryResponse, status_code=201)
async def enqueue_image(body: ImageEntryRequest, runtime: Runtime = Depends(get_runtime)):
    """Record a progress photo for upload."""
    if not os.path.exists(body.file_path):
        raise HTTPException(status_code=400, detail=f"Image file not found: {body.file_path}")

    payload = ImagePayload(
        file_path=body.file_path,
        image_type_id=body.image_type_id,
        date=to_iso8601_utc(body.date),
    )
    try:
        entry = await runtime.queue.enqueue_image(body.local_id or uuid.uuid4().hex, payload)
    except TrackitError as e:
        raise to_http_exception(e)
    return _entry_response(entry)


@router.delete("/{local_id}", response_model=MessageResponse)
async def delete_entry(local_id: str, runtime: Runtime = Depends(get_runtime)):
    """Mark an entry deleted; the server copy is removed on the next sync."""
    try:
        await runtime.queue.mark_deleted_locally(local_id)
    except TrackitError as e:
        raise to_http_exception(e)
    return MessageResponse(message=f"Entry {local_id} marked for deletion")

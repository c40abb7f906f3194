"""Domain records shared by the queue, the auth manager and the orchestrator."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


class SyncStatus(str, enum.Enum):
    """Where an entry stands relative to the server."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    DELETED_LOCALLY = "DELETED_LOCALLY"
    DELETED_ON_SERVER = "DELETED_ON_SERVER"


class EntryKind(str, enum.Enum):
    METRIC = "metric"
    IMAGE = "image"


@dataclass(frozen=True)
class MetricPayload:
    """A single measurement value."""
    metric_type_id: int
    value: float
    date: str  # ISO 8601
    is_apple_health: bool = False


@dataclass(frozen=True)
class ImagePayload:
    """A progress photo on local disk."""
    file_path: str
    image_type_id: int
    date: str  # ISO 8601


Payload = Union[MetricPayload, ImagePayload]

PAYLOAD_FORMAT_VERSION = 1


def payload_to_document(payload: Payload) -> dict[str, Any]:
    """Serialize a payload into a versioned JSON document."""
    if isinstance(payload, MetricPayload):
        return {
            "version": PAYLOAD_FORMAT_VERSION,
            "kind": EntryKind.METRIC.value,
            "metric_type_id": payload.metric_type_id,
            "value": payload.value,
            "date": payload.date,
            "is_apple_health": payload.is_apple_health,
        }
    return {
        "version": PAYLOAD_FORMAT_VERSION,
        "kind": EntryKind.IMAGE.value,
        "file_path": payload.file_path,
        "image_type_id": payload.image_type_id,
        "date": payload.date,
    }


def payload_from_document(document: dict[str, Any]) -> Payload:
    """Inverse of payload_to_document. Raises ValueError on unknown formats."""
    version = document.get("version")
    if version != PAYLOAD_FORMAT_VERSION:
        raise ValueError(f"Unsupported payload format version: {version!r}")

    kind = document.get("kind")
    if kind == EntryKind.METRIC.value:
        return MetricPayload(
            metric_type_id=int(document["metric_type_id"]),
            value=float(document["value"]),
            date=document["date"],
            is_apple_health=bool(document.get("is_apple_health", False)),
        )
    if kind == EntryKind.IMAGE.value:
        return ImagePayload(
            file_path=document["file_path"],
            image_type_id=int(document["image_type_id"]),
            date=document["date"],
        )
    raise ValueError(f"Unknown payload kind: {kind!r}")


@dataclass(frozen=True)
class SyncEntry:
    """One locally recorded metric value or image tracked for sync."""
    local_id: str
    kind: EntryKind
    payload: Payload
    status: SyncStatus
    server_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_sync_attempt: datetime | None = None
    has_deferred_edit: bool = False


@dataclass(frozen=True)
class SyncState:
    """Aggregate sync state published to observers after every change."""
    last_sync_timestamp: datetime | None = None
    is_online: bool = False
    is_syncing: bool = False
    pending_uploads: int = 0
    failed_uploads: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class User:
    id: int
    username: str
    email: str


@dataclass(frozen=True)
class Session:
    """Tokens and identity of the logged-in user."""
    access_token: str
    refresh_token: str
    device_id: str
    user: User | None = None
    issued_at: datetime = field(default_factory=datetime.utcnow)


def to_iso8601_utc(value: datetime) -> str:
    """Format a datetime the way the server stores dates: 2024-01-01T08:30:00.000Z."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"

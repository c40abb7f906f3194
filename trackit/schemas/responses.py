"""Pydantic request and response models for the local control API."""

from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RegisterRequest(LoginRequest):
    email: str = Field(min_length=3)


class UserResponse(BaseModel):
    id: int
    username: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class AuthStatusResponse(BaseModel):
    """Current authentication state."""
    is_logged_in: bool
    user: UserResponse | None = None


class RegisterResult(BaseModel):
    message: str
    user: UserResponse | None = None
    is_logged_in: bool


class MetricEntryRequest(BaseModel):
    """A metric value recorded locally.

    Either metric_name (e.g. "Weight") or metric_type_id must be given.
    """
    local_id: str | None = None
    metric_name: str | None = None
    metric_type_id: int | None = None
    value: float
    date: datetime
    is_apple_health: bool = False

    @model_validator(mode="after")
    def require_metric_type(self):
        if self.metric_name is None and self.metric_type_id is None:
            raise ValueError("metric_name or metric_type_id is required")
        return self


class ImageEntryRequest(BaseModel):
    """A progress photo stored on local disk."""
    local_id: str | None = None
    file_path: str
    image_type_id: int = Field(ge=1, le=8)
    date: datetime


class EntryResponse(BaseModel):
    """Queued entry with its sync status."""
    local_id: str
    kind: str
    status: str
    server_id: str | None
    payload: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None
    last_sync_attempt: datetime | None
    has_deferred_edit: bool


class MetricTypeResponse(BaseModel):
    local_name: str
    server_type_id: int
    unit: str

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


class SyncStateResponse(BaseModel):
    """Aggregate sync state."""
    last_sync_timestamp: datetime | None
    is_online: bool
    is_syncing: bool
    pending_uploads: int
    failed_uploads: int
    error_message: str | None

    model_config = ConfigDict(from_attributes=True)


class SyncTriggerResponse(BaseModel):
    message: str
    started: bool


class ConnectivityRequest(BaseModel):
    online: bool


class SyncLogResponse(BaseModel):
    """One recorded sync pass."""
    id: int
    trigger: str
    started_at: datetime
    completed_at: datetime | None
    status: str
    details: dict[str, Any] | None
    error_message: str | None

    model_config = ConfigDict(from_attributes=True)

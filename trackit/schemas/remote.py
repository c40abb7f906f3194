"""Pydantic models of the remote API response bodies."""

from pydantic import BaseModel, ConfigDict, Field


class RemoteModel(BaseModel):
    """Base for server payloads; unknown fields are ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


class RemoteUser(RemoteModel):
    id: int
    username: str
    email: str


class LoginResponse(RemoteModel):
    success: bool
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    message: str | None = None
    user: RemoteUser | None = None


class RegisterResponse(RemoteModel):
    success: bool
    message: str | None = None
    user: RemoteUser | None = None


class RefreshTokenResponse(RemoteModel):
    success: bool
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    message: str | None = None


class LogoutResponse(RemoteModel):
    success: bool
    message: str | None = None


class ServerMetricEntry(RemoteModel):
    id: str
    metric_type_id: int
    value: float
    date: str
    is_apple_health: bool = False


class GetMetricsResponse(RemoteModel):
    success: bool
    entries: list[ServerMetricEntry] = []
    total: int = 0


class MetricType(RemoteModel):
    id: int
    name: str
    unit: str
    description: str | None = None


class GetMetricTypesResponse(RemoteModel):
    success: bool
    types: list[MetricType] = []


class MetricResponse(RemoteModel):
    success: bool
    message: str | None = None
    entry_id: str | None = Field(default=None, alias="entryId")


class ServerImageEntry(RemoteModel):
    id: str
    image_type_id: int
    filename: str
    date: str
    file_size: int | None = None
    mime_type: str | None = None


class GetImagesResponse(RemoteModel):
    success: bool = True
    images: list[ServerImageEntry] = []
    total: int = 0


class ImageUploadResponse(RemoteModel):
    id: str | None = None
    success: bool = True
    message: str | None = None

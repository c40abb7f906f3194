"""Clients for the authenticated metrics and images endpoints."""

import logging
import os
from typing import Optional

import httpx

from trackit.core.errors import ServerError
from trackit.models.sync import ImagePayload, MetricPayload
from trackit.schemas.remote import (
    GetImagesResponse,
    GetMetricTypesResponse,
    GetMetricsResponse,
    ImageUploadResponse,
    MetricResponse,
)
from trackit.services.transport import ApiClient, parse_response

logger = logging.getLogger(__name__)


def _check_success(result: MetricResponse, context: str) -> MetricResponse:
    if not result.success:
        raise ServerError(f"{context}: {result.message or 'request rejected'}")
    return result


class MetricsApi:
    """Calls /api/metrics through the authenticated client."""

    def __init__(self, client: ApiClient):
        self.client = client

    async def list_entries(
        self, metric_type_id: Optional[int] = None, limit: int = 100, offset: int = 0
    ) -> GetMetricsResponse:
        params = {"limit": limit, "offset": offset}
        if metric_type_id is not None:
            params["metric_type_id"] = metric_type_id
        response = await self.client.request("GET", "/api/metrics", params=params)
        return parse_response(response, GetMetricsResponse, "list metrics")

    async def list_types(self) -> GetMetricTypesResponse:
        response = await self.client.request("GET", "/api/metrics/types")
        return parse_response(response, GetMetricTypesResponse, "list metric types")

    async def create_entry(self, payload: MetricPayload) -> MetricResponse:
        response = await self.client.request(
            "POST",
            "/api/metrics",
            json={
                "metric_type_id": payload.metric_type_id,
                "value": payload.value,
                "date": payload.date,
                "is_apple_health": payload.is_apple_health,
            },
        )
        result = _check_success(parse_response(response, MetricResponse, "create metric"), "create metric")
        if not result.entry_id:
            raise ServerError("create metric: response is missing entryId")
        return result

    async def update_entry(self, entry_id: str, payload: MetricPayload) -> MetricResponse:
        response = await self.client.request(
            "PUT",
            f"/api/metrics/{entry_id}",
            json={
                "value": payload.value,
                "date": payload.date,
                "is_apple_health": payload.is_apple_health,
            },
        )
        return _check_success(parse_response(response, MetricResponse, "update metric"), "update metric")

    async def delete_entry(self, entry_id: str) -> MetricResponse:
        response = await self.client.request("DELETE", f"/api/metrics/{entry_id}")
        return _check_success(parse_response(response, MetricResponse, "delete metric"), "delete metric")


class ImagesApi:
    """Calls /api/images through the authenticated client."""

    def __init__(self, client: ApiClient, upload_timeout: float = 300.0):
        self.client = client
        self.upload_timeout = upload_timeout

    async def list_images(self, limit: int = 1000, offset: int = 0) -> GetImagesResponse:
        response = await self.client.request("GET", "/api/images", params={"limit": limit, "offset": offset})
        return parse_response(response, GetImagesResponse, "list images")

    async def upload_image(self, payload: ImagePayload) -> str:
        """Upload an image file; returns the server id."""
        if not os.path.exists(payload.file_path):
            raise FileNotFoundError(f"Image file not found: {payload.file_path}")

        with open(payload.file_path, "rb") as f:
            response = await self.client.request(
                "POST",
                "/api/images",
                files={"file": (os.path.basename(payload.file_path), f, "image/jpeg")},
                data={"imageTypeId": str(payload.image_type_id), "date": payload.date},
                timeout=httpx.Timeout(self.upload_timeout, connect=60.0),
            )
        result = parse_response(response, ImageUploadResponse, "upload image")
        if not result.success or not result.id:
            raise ServerError(f"upload image: {result.message or 'response is missing id'}")
        return result.id

    async def download_image(self, image_id: str) -> bytes:
        response = await self.client.request(
            "GET", f"/api/images/{image_id}/download", timeout=httpx.Timeout(self.upload_timeout, connect=60.0)
        )
        if response.is_error:
            # Reuse the status mapping of parse_response for error statuses
            parse_response(response, ImageUploadResponse, "download image")
        return response.content

    async def delete_image(self, image_id: str) -> None:
        response = await self.client.request("DELETE", f"/api/images/{image_id}")
        if response.is_error:
            parse_response(response, ImageUploadResponse, "delete image")

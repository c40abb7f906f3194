"""Mapping of sync core errors to HTTP responses."""

import logging
from fastapi import HTTPException

from trackit.core.errors import (
    AuthError,
    EntryNotFoundError,
    InvalidTransitionError,
    NetworkError,
    ServerError,
    StorageError,
    TrackitError,
)

logger = logging.getLogger(__name__)


def to_http_exception(error: TrackitError) -> HTTPException:
    """Translate a sync core error into the HTTPException the router raises."""
    if isinstance(error, AuthError):
        return HTTPException(status_code=401, detail=str(error))
    if isinstance(error, EntryNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, NetworkError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, ServerError):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, StorageError):
        logger.error(f"Storage failure: {error}")
        return HTTPException(status_code=500, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))

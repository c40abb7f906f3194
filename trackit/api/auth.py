"""Authentication API endpoints."""

import logging
from fastapi import APIRouter, Depends

from trackit.api.errors import to_http_exception
from trackit.core.errors import TrackitError
from trackit.core.runtime import Runtime, get_runtime
from trackit.schemas.responses import (
    AuthStatusResponse,
    LoginRequest,
    RegisterRequest,
    RegisterResult,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _status(runtime: Runtime) -> AuthStatusResponse:
    user = runtime.auth.current_user.value
    return AuthStatusResponse(
        is_logged_in=runtime.auth.is_logged_in.value,
        user=UserResponse.model_validate(user) if user else None,
    )


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(runtime: Runtime = Depends(get_runtime)):
    """Return whether a user is logged in."""
    return _status(runtime)


@router.post("/login", response_model=AuthStatusResponse)
async def login(body: LoginRequest, runtime: Runtime = Depends(get_runtime)):
    """Log in and persist the session."""
    try:
        await runtime.auth.login(body.username, body.password)
    except TrackitError as e:
        logger.info(f"Login failed for {body.username}: {e}")
        raise to_http_exception(e)
    return _status(runtime)


@router.post("/register", response_model=RegisterResult)
async def register(body: RegisterRequest, runtime: Runtime = Depends(get_runtime)):
    """Register a new account and log in with it.

    Registration is reported as successful even when the automatic login
    afterwards fails; is_logged_in tells the caller which happened.
    """
    try:
        user = await runtime.auth.register(body.username, body.password, body.email)
    except TrackitError as e:
        logger.info(f"Registration failed for {body.username}: {e}")
        raise to_http_exception(e)

    is_logged_in = runtime.auth.is_logged_in.value
    return RegisterResult(
        message="Registration successful" if is_logged_in else "Registration successful, please log in",
        user=UserResponse.model_validate(user) if user else None,
        is_logged_in=is_logged_in,
    )


@router.post("/logout", response_model=AuthStatusResponse)
async def logout(runtime: Runtime = Depends(get_runtime)):
    """Log out. Always succeeds locally."""
    try:
        await runtime.auth.logout()
    except TrackitError as e:
        raise to_http_exception(e)
    return _status(runtime)

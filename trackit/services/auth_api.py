"""Client for the remote authentication endpoints."""

import logging

from trackit.core.errors import InvalidCredentials, ServerError, TokenRevoked
from trackit.schemas.remote import LoginResponse, LogoutResponse, RefreshTokenResponse, RegisterResponse
from trackit.services.transport import ApiClient, error_message, parse_response

logger = logging.getLogger(__name__)


class AuthApi:
    """
    Calls /auth and /user endpoints.

    Uses a client without BearerTokenAuth: these calls must never trigger the
    refresh flow themselves.
    """

    def __init__(self, client: ApiClient):
        self.client = client

    async def login(self, username: str, password: str) -> LoginResponse:
        response = await self.client.request(
            "POST", "/auth/login", json={"username": username, "password": password}
        )
        if response.status_code in (400, 401, 403):
            raise InvalidCredentials(error_message(response) or "Login failed")
        return parse_response(response, LoginResponse, "login")

    async def register(self, username: str, password: str, email: str) -> RegisterResponse:
        response = await self.client.request(
            "POST",
            "/user/register",
            json={"username": username, "password": password, "email": email},
        )
        if response.status_code in (400, 409, 422):
            # Validation failures still carry a useful body
            try:
                return RegisterResponse.model_validate(response.json())
            except ValueError:
                raise ServerError(
                    f"Registration failed: {error_message(response)}", status_code=response.status_code
                )
        return parse_response(response, RegisterResponse, "register")

    async def refresh(self, refresh_token: str, device_id: str) -> RefreshTokenResponse:
        response = await self.client.request(
            "POST", "/auth/refresh", json={"refreshToken": refresh_token, "deviceId": device_id}
        )
        if response.status_code in (400, 401, 403):
            raise TokenRevoked(f"Token refresh rejected: {error_message(response)}")
        return parse_response(response, RefreshTokenResponse, "refresh")

    async def logout(self, access_token: str | None, device_id: str) -> LogoutResponse:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        response = await self.client.request(
            "POST", "/auth/logout", json={"deviceId": device_id}, headers=headers
        )
        return parse_response(response, LogoutResponse, "logout")

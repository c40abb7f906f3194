"""Authentication lifecycle: login, registration, token refresh, logout."""

import asyncio
import logging
from typing import Optional

from trackit.core.errors import AuthError, InvalidCredentials, NetworkError, ServerError, TokenExpired, TokenRevoked
from trackit.core.observable import StateFlow
from trackit.models.sync import Session, User
from trackit.schemas.remote import RemoteUser
from trackit.services.auth_api import AuthApi
from trackit.services.credentials import CredentialStore

logger = logging.getLogger(__name__)


def _to_user(remote: Optional[RemoteUser]) -> Optional[User]:
    if remote is None:
        return None
    return User(id=remote.id, username=remote.username, email=remote.email)


class AuthSessionManager:
    """
    Owns the session and hands out the current access token.

    State machine: logged out -> (login) -> logged in -> (refresh failure |
    logout) -> logged out. Other components only read the token through
    get_access_token(); they never keep a copy.
    """

    def __init__(self, api: AuthApi, store: CredentialStore):
        self.api = api
        self.store = store
        self._session: Optional[Session] = None
        self._refresh_lock = asyncio.Lock()
        self.is_logged_in: StateFlow[bool] = StateFlow(False)
        self.current_user: StateFlow[Optional[User]] = StateFlow(None)

    async def start(self) -> None:
        """Restore a persisted session, if any."""
        self._session = await self.store.get()
        self._publish()
        if self._session:
            logger.info("Restored persisted session")

    def _publish(self) -> None:
        self.is_logged_in.set(self._session is not None)
        self.current_user.set(self._session.user if self._session else None)

    async def _clear_session(self) -> None:
        self._session = None
        await self.store.clear()
        self._publish()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def get_access_token(self) -> Optional[str]:
        """Current access token; never triggers a refresh."""
        return self._session.access_token if self._session else None

    async def login(self, username: str, password: str) -> Session:
        """
        Log in and persist the new session.

        Raises:
            InvalidCredentials: the server rejected the credentials
            NetworkError: the server could not be reached
            ServerError: unexpected server response
        """
        response = await self.api.login(username, password)
        if not response.success or not response.access_token:
            logger.info(f"Login rejected for {username}: {response.message}")
            raise InvalidCredentials(response.message or "Login failed")

        device_id = await self.store.device_id()
        session = Session(
            access_token=response.access_token,
            refresh_token=response.refresh_token or "",
            device_id=device_id,
            user=_to_user(response.user),
        )
        await self.store.put(session)
        self._session = session
        self._publish()
        logger.info(f"Logged in as {username}")
        return session

    async def register(self, username: str, password: str, email: str) -> Optional[User]:
        """
        Register a new account, then log in with the same credentials.

        A failed automatic login does not fail the registration: the account
        exists, the caller just stays logged out.
        """
        response = await self.api.register(username, password, email)
        if not response.success:
            raise AuthError(response.message or "Registration failed")

        logger.info(f"Registered {username}, logging in")
        try:
            await self.login(username, password)
        except (AuthError, NetworkError, ServerError) as e:
            logger.warning(f"Automatic login after registration failed for {username}: {e}")

        return _to_user(response.user)

    async def refresh_token(self, stale_token: Optional[str] = None) -> str:
        """
        Exchange the refresh token for a new access token.

        Concurrent callers are serialized. A caller that passes the token it
        was rejected with gets the already-refreshed token if someone else
        refreshed in the meantime, without another network call.

        Raises:
            TokenExpired: there is no refresh token (session cleared)
            TokenRevoked: the server refused the refresh token (session cleared)
            NetworkError: the server could not be reached (session kept)
            ServerError: unexpected server failure (session kept)
        """
        async with self._refresh_lock:
            session = self._session
            if session and stale_token is not None and session.access_token != stale_token:
                logger.debug("Access token already refreshed by another request")
                return session.access_token

            if session is None or not session.refresh_token:
                logger.warning("No refresh token available")
                if session is not None:
                    await self._clear_session()
                raise TokenExpired("No refresh token available")

            try:
                response = await self.api.refresh(session.refresh_token, session.device_id)
            except TokenRevoked as e:
                logger.warning(f"Token refresh rejected, logging out: {e}")
                await self._clear_session()
                raise

            if not response.success or not response.access_token:
                logger.warning(f"Token refresh unsuccessful, logging out: {response.message}")
                await self._clear_session()
                raise TokenRevoked(response.message or "Token refresh failed")

            refreshed = Session(
                access_token=response.access_token,
                refresh_token=response.refresh_token or session.refresh_token,
                device_id=session.device_id,
                user=session.user,
            )
            await self.store.put(refreshed)
            self._session = refreshed
            logger.info("Access token refreshed")
            return refreshed.access_token

    async def logout(self) -> None:
        """Log out remotely (best effort) and always clear the local session."""
        session = self._session
        device_id = session.device_id if session else await self.store.device_id()
        try:
            await self.api.logout(session.access_token if session else None, device_id)
        except Exception as e:
            logger.warning(f"Remote logout failed, clearing local session anyway: {e}")

        await self._clear_session()
        logger.info("Logged out")

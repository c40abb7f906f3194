"""Exception hierarchy for the sync core."""


class TrackitError(Exception):
    """Base class for all sync core errors."""
    pass


class NetworkError(TrackitError):
    """Raised when the remote API is unreachable or a call timed out."""
    pass


class AuthError(TrackitError):
    """Raised when authentication fails or cannot be recovered."""
    pass


class InvalidCredentials(AuthError):
    """Raised when the server rejects a username/password pair."""
    pass


class TokenExpired(AuthError):
    """Raised when a request is still unauthorized after the refresh retry."""
    pass


class TokenRevoked(AuthError):
    """Raised when the server refuses to exchange the refresh token."""
    pass


class ServerError(TrackitError):
    """Raised for non-2xx responses and unreadable response bodies."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConflictError(TrackitError):
    """Raised when the server no longer knows an entry id."""
    pass


class StorageError(TrackitError):
    """Raised when local persistence fails."""
    pass


class EntryNotFoundError(TrackitError, LookupError):
    """Raised when a local id is not present in the entry queue."""
    pass


class InvalidTransitionError(TrackitError, ValueError):
    """Raised when an entry cannot move to the requested status."""
    pass

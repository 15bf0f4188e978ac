class ChatRelayError(Exception):
    """Base class for errors that map onto an HTTP status.

    Attributes:
        status (int): HTTP status code used by the API error middleware
        message (str): Human readable description returned to the client
    """
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatRelayError):
    """A required field is missing or malformed."""
    status = 400


class AuthError(ChatRelayError):
    """Credentials did not match the stored hash."""
    status = 401


class PermissionDenied(ChatRelayError):
    """Caller is not allowed to act on the referenced group."""
    status = 403


class NotFoundError(ChatRelayError):
    """Referenced user or group does not exist."""
    status = 404


class PersistenceError(ChatRelayError):
    """Store could not be read from or written to disk."""
    status = 500

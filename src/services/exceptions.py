"""Error taxonomy for the account authentication workflow.

Every recoverable failure is an ``AuthError`` carrying the HTTP status and a
detail message that is safe to return to the caller. Infrastructure failures
are reported as ``InternalError`` whose detail never includes the original
exception text.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for user-facing authentication errors."""

    status_code: int = 400
    error: str = "Bad request"
    expired: bool = False

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.error
        super().__init__(self.detail)


class ValidationError(AuthError):
    """Missing or malformed input."""

    status_code = 400
    error = "Validation error"


class ConflictError(AuthError):
    """An account with the given email already exists."""

    status_code = 400
    error = "Conflict"


class UnauthorizedError(AuthError):
    """Bad credentials, unconfirmed email, or missing/invalid bearer token.

    ``expired`` is set when a bearer token was rejected only because its
    lifetime ran out.
    """

    status_code = 401
    error = "Unauthorized"

    def __init__(self, detail: Optional[str] = None, expired: bool = False):
        super().__init__(detail)
        self.expired = expired


class NotFoundError(AuthError):
    """Unknown account or unmatched action token."""

    status_code = 404
    error = "Not found"


class InvalidTokenError(AuthError):
    """Expired or unparsable signed token.

    ``reason`` is either ``"expired"`` or ``"malformed"``. It is meant for
    server-side logging and the ``Token-Expired`` response header; the
    detail shown to callers is the same for both.
    """

    status_code = 404
    error = "Invalid token"

    def __init__(self, reason: str = "malformed", detail: Optional[str] = None):
        self.reason = reason
        super().__init__(detail or "Invalid or expired token.")

    @property
    def expired(self) -> bool:
        return self.reason == "expired"


class InternalError(AuthError):
    """Store, mail or signing infrastructure failure."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or "Internal server error.")


class DeliveryError(InternalError):
    """The notifier failed or timed out while sending a message."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or "Email could not be sent. Please try again later.")

"""
BountyHub - Authentication Error Taxonomy

Expected failures (bad credentials, dead sessions, bad tokens) are raised as
AuthError subclasses and rendered by one exception handler. Each error keeps
a machine-readable `reason` for server-side logs apart from the message the
client sees, so token and session failures are distinguishable in logs but
identical on the wire.

Infrastructure failures are StoreError / ConfigurationError and surface as
generic 500 responses.
"""

from typing import Optional


GENERIC_UNAUTHORIZED = "Unauthorized"
GENERIC_SERVER_ERROR = "Internal server error"


class AuthError(Exception):
    """Base class for expected authentication/authorization failures."""

    status_code: int = 401
    public_message: str = GENERIC_UNAUTHORIZED
    reason: str = "auth_error"

    def __init__(self, reason: Optional[str] = None, public_message: Optional[str] = None):
        if reason:
            self.reason = reason
        if public_message:
            self.public_message = public_message
        super().__init__(self.reason)


class InvalidCredentials(AuthError):
    """Email, password or login role did not match. Never says which."""
    public_message = "Invalid email or password"
    reason = "invalid_credentials"


class AccountInactive(AuthError):
    public_message = "Account is inactive"
    reason = "account_inactive"


class PendingApproval(AuthError):
    """Organization registered but not yet activated by an administrator."""
    public_message = "Account pending activation. Please wait for admin approval."
    reason = "pending_approval"


class Unauthenticated(AuthError):
    """No usable credential, or the credential failed verification."""
    reason = "unauthenticated"


class SessionExpired(Unauthenticated):
    reason = "session_expired"


class InvalidTokenError(Unauthenticated):
    """Raised when JWT validation fails."""
    reason = "invalid_token"


class TokenExpired(InvalidTokenError):
    reason = "token_expired"


class TokenMalformed(InvalidTokenError):
    reason = "token_malformed"


class WrongTokenKind(InvalidTokenError):
    reason = "wrong_token_kind"


class UserNotFound(Unauthenticated):
    reason = "user_not_found"


class UserInactive(Unauthenticated):
    reason = "user_inactive"


class Forbidden(AuthError):
    status_code = 403
    public_message = "Forbidden"
    reason = "forbidden"


class NotFound(AuthError):
    status_code = 404
    public_message = "Not found"
    reason = "not_found"


class ConfigurationError(RuntimeError):
    """Deployment misconfiguration (e.g. missing signing secret). Fatal."""


class StoreError(RuntimeError):
    """Underlying persistence failure. Logged in full, never shown to clients."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store operation failed: {operation}")

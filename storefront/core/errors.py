"""Error taxonomy for the trust layer.

Every error carries the HTTP status it maps to and a stable ``error_code``.
Messages are safe to return to clients; provider details stay in the logs.
"""

from typing import Optional


class TrustLayerError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    status_code: int = 500
    error_code: str = "errors.internal"
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if error_code:
            self.error_code = error_code

    def headers(self) -> dict:
        return {}


class AuthenticationError(TrustLayerError):
    """No session, or the presented token/session is invalid or expired."""

    status_code = 401
    error_code = "auth.errors.unauthenticated"
    default_message = "Authentication required"

    def headers(self) -> dict:
        return {"WWW-Authenticate": "Bearer"}


class AuthorizationError(TrustLayerError):
    """Authenticated, but not allowed to perform the operation."""

    status_code = 403
    error_code = "auth.errors.forbidden"
    default_message = "Access denied"


class ValidationError(TrustLayerError):
    status_code = 400
    error_code = "errors.invalidPayload"
    default_message = "Invalid payload"


class MalformedPayloadError(ValidationError):
    status_code = 400
    error_code = "errors.invalidPayload"
    default_message = "Invalid upload payload"


class SizeExceededError(ValidationError):
    status_code = 413
    error_code = "uploads.errors.sizeExceeded"
    default_message = "File is too large"


class UnsupportedMediaTypeError(ValidationError):
    status_code = 415
    error_code = "uploads.errors.typeRejected"
    default_message = "File type is not allowed"


class InvalidTokenError(ValidationError):
    """A password reset or email confirmation token that is unknown, used or expired."""

    status_code = 400
    error_code = "auth.errors.invalidToken"
    default_message = "This link is invalid or has expired"


class ConflictError(TrustLayerError):
    status_code = 409
    error_code = "errors.conflict"
    default_message = "Resource already exists"


class RateLimitError(TrustLayerError):
    status_code = 429
    error_code = "auth.errors.tooManyRequests"
    default_message = "Too many requests"

    def __init__(self, retry_after: int = 60, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    def headers(self) -> dict:
        return {"Retry-After": str(self.retry_after)}


class StorageError(TrustLayerError):
    """The object storage provider failed; the client may retry the request."""

    status_code = 500
    error_code = "uploads.errors.storageFailed"
    default_message = "Upload failed, please try again"

    def __init__(self, bucket: str, key: str, message: Optional[str] = None):
        super().__init__(message)
        self.bucket = bucket
        self.key = key

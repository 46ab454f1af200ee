"""
REGISTRATION CORE - ERROR TAXONOMY

Every failure the reconciliation core can surface derives from
RegistrationError. The HTTP layer maps each class to a status code via
`http_status`; nothing here knows about FastAPI.

Retry policy:
- ValidationError, NotFound, Unauthorized, InvalidSignature: never retried
- AllocationFailed, ReconciliationFailed, GatewayUnavailable: retryable by the caller
"""

from typing import List, Optional


class RegistrationError(Exception):
    """Base exception for the registration core."""
    http_status = 500
    retryable = False

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(RegistrationError):
    """Raised when input is missing required fields or has the wrong shape."""
    http_status = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message)


class NotFound(RegistrationError):
    """Raised when a registration (or order) cannot be resolved."""
    http_status = 404


class Unauthorized(RegistrationError):
    """Raised when an admin operation has no valid principal."""
    http_status = 401


class InvalidSignature(RegistrationError):
    """Raised when a payment callback or webhook signature does not verify."""
    http_status = 400


class MalformedIdentifier(RegistrationError):
    """Raised when a registration identifier does not match BTNM-<T>-<S>-<N>."""
    http_status = 500

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Malformed registration identifier {identifier!r}: {reason}")


class RegistrationLocked(RegistrationError):
    """Raised when an operation is refused because the registration is paid/completed."""
    http_status = 409


class AllocationFailed(RegistrationError):
    """Raised when a sequence counter cannot be incremented after max retries."""
    http_status = 503
    retryable = True


class ReconciliationFailed(RegistrationError):
    """Raised when the paid transition cannot be persisted after max attempts."""
    http_status = 503
    retryable = True


class GatewayUnavailable(RegistrationError):
    """Raised when the payment gateway times out or returns a server error."""
    http_status = 503
    retryable = True


class GatewayError(RegistrationError):
    """Raised when the payment gateway rejects a request (4xx)."""
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

"""
Failure taxonomy for the connection broker.

Every operation either returns its value or raises one of these. Callers dispatch on the
class (or on `code`), never by probing for optional fields.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Enum-like class for standardized error codes."""
    INVALID_INPUT = "INVALID_INPUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_OR_EXPIRED_STATE = "INVALID_OR_EXPIRED_STATE"
    NOT_FOUND = "NOT_FOUND"
    CONNECTION_NOT_FOUND = "CONNECTION_NOT_FOUND"
    TRANSACTION_FAILURE = "TRANSACTION_FAILURE"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    REFRESH_FAILED = "REFRESH_FAILED"
    VENDOR_ERROR = "VENDOR_ERROR"
    NEEDS_REAUTHORIZATION = "NEEDS_REAUTHORIZATION"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BrokerError(Exception):
    """Base class for all broker failures."""

    code: str = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(BrokerError):
    """Missing/malformed fields or unsupported provider."""
    code = ErrorCode.INVALID_INPUT
    status_code = 400


class Unauthorized(BrokerError):
    """Missing, malformed or unknown secret key."""
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class InvalidOrExpiredState(Unauthorized):
    """OAuth state nonce unknown or past its TTL."""
    code = ErrorCode.INVALID_OR_EXPIRED_STATE


class NotFound(BrokerError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ConnectionNotFound(NotFound):
    code = ErrorCode.CONNECTION_NOT_FOUND


class TransactionFailure(BrokerError):
    """A multi-row write was rolled back; the whole operation may be retried."""
    code = ErrorCode.TRANSACTION_FAILURE
    status_code = 500
    retryable = True


class TransientProviderFailure(BrokerError):
    """Network error, timeout or non-grant error from the provider."""
    code = ErrorCode.VENDOR_ERROR
    status_code = 502
    retryable = True


class TokenExchangeFailed(TransientProviderFailure):
    code = ErrorCode.TOKEN_EXCHANGE_FAILED


class RefreshFailed(TransientProviderFailure):
    code = ErrorCode.REFRESH_FAILED


class NeedsReauthorization(BrokerError):
    """The stored refresh token is permanently unusable; run the OAuth flow again."""
    code = ErrorCode.NEEDS_REAUTHORIZATION
    status_code = 403


class InvalidGrant(Exception):
    """Raised by provider clients when the token endpoint rejects the grant itself."""

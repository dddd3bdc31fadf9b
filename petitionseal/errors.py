"""
Typed errors for the signature pipeline.

Every failure a caller can branch on carries an ``ErrorCode``. Messages on
authorization errors are deliberately generic; the code is what clients use.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_CODE = "INVALID_CODE"
    INVALID_TOKEN = "INVALID_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    WRONG_PURPOSE = "WRONG_PURPOSE"
    EMAIL_MISMATCH = "EMAIL_MISMATCH"
    RATE_LIMITED = "RATE_LIMITED"
    PETITION_NOT_FOUND = "PETITION_NOT_FOUND"
    PETITION_NOT_LIVE = "PETITION_NOT_LIVE"
    ALREADY_SIGNED = "ALREADY_SIGNED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PetitionSealError(Exception):
    """Base class for errors surfaced to callers."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "Internal server error"
    retryable: bool = False

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        self.message = message or self.default_message
        self.field = field
        super().__init__(f"{self.code.value}: {self.message}")

    def to_dict(self) -> dict:
        body = {"error": self.code.value, "message": self.message}
        if self.field:
            body["field"] = self.field
        return body


# ----------------------------------------------------------------------------
# Input errors
# ----------------------------------------------------------------------------

class InputError(PetitionSealError):
    code = ErrorCode.INVALID_INPUT
    status_code = 400
    default_message = "Invalid request data"


class InvalidSignatureError(InputError):
    code = ErrorCode.INVALID_SIGNATURE
    default_message = "Invalid signature data"


# ----------------------------------------------------------------------------
# Authorization errors
# ----------------------------------------------------------------------------

class AuthorizationError(PetitionSealError):
    status_code = 401


class InvalidCodeError(AuthorizationError):
    code = ErrorCode.INVALID_CODE
    status_code = 400
    default_message = "Invalid or expired verification code."


class InvalidTokenError(AuthorizationError):
    code = ErrorCode.INVALID_TOKEN
    default_message = "Invalid token"


class ExpiredTokenError(InvalidTokenError):
    code = ErrorCode.EXPIRED_TOKEN
    default_message = "Token has expired"


class WrongPurposeError(InvalidTokenError):
    code = ErrorCode.WRONG_PURPOSE
    default_message = "Invalid token purpose"


class EmailMismatchError(AuthorizationError):
    code = ErrorCode.EMAIL_MISMATCH
    status_code = 403
    default_message = "Email does not match the verified address"


# ----------------------------------------------------------------------------
# Conflict errors
# ----------------------------------------------------------------------------

class PetitionNotFoundError(PetitionSealError):
    code = ErrorCode.PETITION_NOT_FOUND
    status_code = 404
    default_message = "Petition not found"


class PetitionNotLiveError(PetitionSealError):
    code = ErrorCode.PETITION_NOT_LIVE
    status_code = 409
    default_message = "This petition is not currently accepting signatures"


class AlreadySignedError(PetitionSealError):
    code = ErrorCode.ALREADY_SIGNED
    status_code = 409
    default_message = "You have already signed this petition"


class NotFoundError(PetitionSealError):
    code = ErrorCode.NOT_FOUND
    status_code = 404
    default_message = "Not found"


# ----------------------------------------------------------------------------
# Rate limiting
# ----------------------------------------------------------------------------

class RateLimitedError(PetitionSealError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429
    default_message = "Too many requests. Please try again later."
    retryable = True

    def __init__(self, message: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


# ----------------------------------------------------------------------------
# Dependency failures
# ----------------------------------------------------------------------------

class DependencyError(PetitionSealError):
    status_code = 503
    retryable = True


class DeliveryFailedError(DependencyError):
    code = ErrorCode.DELIVERY_FAILED
    default_message = "Failed to send verification code. Please try again."


class StorageUnavailableError(DependencyError):
    code = ErrorCode.STORAGE_UNAVAILABLE
    default_message = "Storage is temporarily unavailable. Please try again."


class ConfigError(Exception):
    """Raised at startup when required configuration is missing or invalid."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))

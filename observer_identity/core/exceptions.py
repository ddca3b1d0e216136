"""
Custom exception classes for the observer identity service.
Provides structured error handling with machine-readable error codes.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes shared with API consumers"""

    # Authentication errors (401)
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_NOT_AUTHENTICATED = "AUTH_NOT_AUTHENTICATED"

    # Authorization errors (403)
    AUTHZ_FORBIDDEN = "AUTHZ_FORBIDDEN"

    # Resource errors (404, 409)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Validation errors (400, 422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Configuration errors (503)
    CONFIG_MISSING = "CONFIG_MISSING"

    # Verification provider errors (502)
    PROVIDER_UNAUTHORIZED = "PROVIDER_UNAUTHORIZED"
    PROVIDER_ERROR = "PROVIDER_ERROR"

    # Server errors (500+)
    SERVER_ERROR = "SERVER_ERROR"
    SERVER_UNAVAILABLE = "SERVER_UNAVAILABLE"


class AppException(Exception):
    """
    Base exception class for application errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SERVER_ERROR,
        status_code: int = 500,
        field: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.field = field
        self.metadata = metadata or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to response dictionary"""
        response = {
            "detail": self.message,
            "code": self.code.value,
        }
        if self.field:
            response["field"] = self.field
        if self.metadata:
            response["metadata"] = self.metadata
        return response


# Authentication Errors (401)


class AuthenticationError(AppException):
    """Base authentication error"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_NOT_AUTHENTICATED,
        field: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=401,
            field=field,
            metadata=metadata,
        )


class InvalidCredentialsError(AuthenticationError):
    """Invalid operator username or password"""

    def __init__(
        self,
        message: str = "Incorrect username or password",
        field: str | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.AUTH_INVALID_CREDENTIALS,
            field=field,
        )


class TokenInvalidError(AuthenticationError):
    """JWT token is invalid or expired"""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            code=ErrorCode.AUTH_TOKEN_INVALID,
        )


# Configuration Errors (503)


class ConfigurationMissingError(AppException):
    """A required secret or provider credential is not configured"""

    def __init__(
        self,
        message: str = "Required configuration is missing",
        setting: str | None = None,
    ):
        metadata = {"setting": setting} if setting else None
        super().__init__(
            message=message,
            code=ErrorCode.CONFIG_MISSING,
            status_code=503,
            metadata=metadata,
        )


# Verification Provider Errors (502)


class ProviderUnauthorizedError(AppException):
    """Provider rejected our credentials; needs operator action, not a retry"""

    def __init__(
        self,
        message: str = "Verification provider credentials not activated",
    ):
        super().__init__(
            message=message,
            code=ErrorCode.PROVIDER_UNAUTHORIZED,
            status_code=502,
        )


class VerificationFailedError(AppException):
    """Any other provider or transport failure. Details are only logged."""

    def __init__(
        self,
        message: str = "Identity verification failed",
    ):
        super().__init__(
            message=message,
            code=ErrorCode.PROVIDER_ERROR,
            status_code=502,
        )


# Validation Errors (422)


class CredentialTooLargeError(AppException):
    """Credential content does not fit in a single QR code"""

    def __init__(
        self,
        message: str = "Credential data is too large to encode as a QR code",
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=422,
            field="data",
        )

"""
HTTP-facing exceptions of the SAML federation API.

Each class fixes the status code of the response it produces:

    FederationException            500
    ├── ValidationError            400
    │   ├── InvalidMetadataError
    │   └── SamlBadRequest
    ├── AuthenticationError        401
    │   └── SamlAuthenticationFailed
    ├── AuthorizationError         403
    └── ConfigurationError         500

Errors from ``src.auth.saml`` know nothing about HTTP; ``from_saml_error``
maps them onto this hierarchy at the route boundary.
"""

from enum import Enum
from typing import Any, Dict, Optional, Type

from src.auth.saml.errors import (
    InvalidSamlMetadataError,
    PreferencesParseError,
    SamlAuthenticationError,
    SamlBadRequestError,
    SamlError,
    SamlNotInitializedError,
)


class ErrorCode(str, Enum):
    """Machine-readable ``error_code`` values of error responses."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_API_KEY = "INVALID_API_KEY"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FEATURE_NOT_AVAILABLE = "FEATURE_NOT_AVAILABLE"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    SAML_INVALID_METADATA = "SAML_INVALID_METADATA"
    SAML_BAD_REQUEST = "SAML_BAD_REQUEST"
    SAML_AUTH_ERROR = "SAML_AUTH_ERROR"
    SAML_NOT_INITIALIZED = "SAML_NOT_INITIALIZED"
    SAML_PREFERENCES_PARSE_ERROR = "SAML_PREFERENCES_PARSE_ERROR"


class FederationException(Exception):
    """
    Base class for errors that become JSON error responses.

    Attributes:
        message: Client-facing text, sanitized again before it is sent
        error_code: Value of the ``error_code`` field
        details: Extra context; only allow-listed keys reach the client
        internal_message: Logged, never returned
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FederationException):
    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"


class InvalidMetadataError(ValidationError):
    default_error_code = ErrorCode.SAML_INVALID_METADATA
    default_message = "Invalid SAML metadata"


class SamlBadRequest(ValidationError):
    default_error_code = ErrorCode.SAML_BAD_REQUEST
    default_message = "Invalid SAML request"


class AuthenticationError(FederationException):
    """Missing or wrong admin key, or a rejected SAML response."""

    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class SamlAuthenticationFailed(AuthenticationError):
    default_error_code = ErrorCode.SAML_AUTH_ERROR
    default_message = "SAML Authentication failed."


class AuthorizationError(FederationException):
    """SAML is not licensed, or SAML login is not enabled."""

    status_code = 403
    default_error_code = ErrorCode.PERMISSION_DENIED
    default_message = "Permission denied"


class ConfigurationError(FederationException):
    """Server-side state the request cannot be served from."""

    status_code = 500
    default_error_code = ErrorCode.INTERNAL_ERROR
    default_message = "Server configuration error"


_SAML_ERRORS: Dict[Type[SamlError], Type[FederationException]] = {
    InvalidSamlMetadataError: InvalidMetadataError,
    SamlBadRequestError: SamlBadRequest,
    SamlAuthenticationError: SamlAuthenticationFailed,
    SamlNotInitializedError: ConfigurationError,
    PreferencesParseError: ConfigurationError,
}


def from_saml_error(exc: SamlError) -> FederationException:
    """
    Map a SAML package error onto its HTTP exception.

    Subclasses resolve through their MRO; anything unmapped is a 500. The
    SAML error code is kept when it is a known ``ErrorCode``.
    """
    http_type = next(
        (_SAML_ERRORS[cls] for cls in type(exc).__mro__ if cls in _SAML_ERRORS),
        ConfigurationError,
    )
    known_codes = {code.value for code in ErrorCode}
    error_code = ErrorCode(exc.error_code) if exc.error_code in known_codes else None

    return http_type(message=exc.message, error_code=error_code, details=exc.details)

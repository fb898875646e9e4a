"""
SAML error taxonomy.

Every failure surfaced by the SAML package is one of these types; errors
raised by the protocol library are converted at the call site and never
leak upward.
"""

from typing import Any, Dict, Optional


class SamlError(Exception):
    """Base exception for SAML federation errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "SAML_ERROR"
        self.details = details or {}


class InvalidSamlMetadataError(SamlError):
    """Federation metadata is malformed or fails schema validation."""

    def __init__(
        self,
        message: str = "Invalid SAML metadata",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "SAML_INVALID_METADATA", details)


class SamlBadRequestError(SamlError):
    """Admin input or a metadata source is missing, unreachable or unusable."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SAML_BAD_REQUEST", details)


class SamlAuthenticationError(SamlError):
    """An inbound response failed verification or lacks required claims."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SAML_AUTH_ERROR", details)


class SamlNotInitializedError(SamlError):
    """The protocol layer was used before it was loaded."""

    def __init__(self, message: str = "SAML protocol library is not initialized"):
        super().__init__(message, "SAML_NOT_INITIALIZED")


class PreferencesParseError(SamlError):
    """The persisted preferences row cannot be decoded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SAML_PREFERENCES_PARSE_ERROR", details)

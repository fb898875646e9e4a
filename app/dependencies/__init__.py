"""
FastAPI dependencies for the SAML federation service.

This module provides reusable dependencies for:
- Access to the process-wide SamlService
- SAML licensing and enablement guards

Usage:
    from app.dependencies import get_saml_service, require_saml_licensed
"""

import logging

from fastapi import Depends, Request

from app.exceptions import AuthorizationError, ConfigurationError, ErrorCode
from src.auth.saml.service import SamlService

logger = logging.getLogger(__name__)


def get_saml_service(request: Request) -> SamlService:
    """Return the SamlService created during application startup."""
    service = getattr(request.app.state, "saml_service", None)
    if service is None:
        raise ConfigurationError("SAML service is not available")
    return service


def require_saml_licensed(
    service: SamlService = Depends(get_saml_service),
) -> SamlService:
    if not service.settings.saml_licensed:
        raise AuthorizationError(
            "SAML is not licensed for this instance",
            error_code=ErrorCode.FEATURE_NOT_AVAILABLE,
        )
    return service


def require_saml_enabled(
    service: SamlService = Depends(require_saml_licensed),
) -> SamlService:
    if not service.is_licensed_and_enabled:
        raise AuthorizationError(
            "SAML login is not enabled",
            error_code=ErrorCode.FEATURE_NOT_AVAILABLE,
        )
    return service


__all__ = [
    "get_saml_service",
    "require_saml_licensed",
    "require_saml_enabled",
]

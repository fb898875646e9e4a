"""
Authentication for SAML administration endpoints.

Configuration endpoints are protected by an admin API key sent in the
X-API-Key header and compared against ADMIN_API_KEY.

Security Considerations:
- Keys are compared in constant time
- Failed attempts are logged with the client address only
- Without a configured key, admin endpoints are only open outside production
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from src.config import Settings, get_settings

from .exceptions import AuthenticationError, ErrorCode

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_admin_api_key(
    request: Request,
    api_key: Optional[str] = Depends(API_KEY_HEADER),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """
    Verify the admin API key provided in the request header.

    Returns:
        The validated API key, or None when running unprotected in development

    Raises:
        AuthenticationError: If the API key is missing or invalid
    """
    client_host = request.client.host if request.client else "unknown"
    expected = settings.security.admin_api_key

    if expected is None:
        if settings.is_production:
            logger.error("ADMIN_API_KEY is not configured; rejecting admin request")
            raise AuthenticationError(
                "Admin API key is not configured",
                error_code=ErrorCode.INVALID_API_KEY,
            )
        logger.debug("ADMIN_API_KEY not set: admin endpoints are unprotected in development")
        return None

    if not api_key:
        logger.warning(f"Missing admin API key in request from {client_host}")
        raise AuthenticationError("API key is required")

    if not secrets.compare_digest(api_key, expected.get_secret_value()):
        logger.warning(f"Invalid admin API key in request from {client_host}")
        raise AuthenticationError(
            "Invalid API key",
            error_code=ErrorCode.INVALID_API_KEY,
        )

    return api_key

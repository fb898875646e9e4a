"""API routes for the SAML federation service."""

from .saml import router as saml_router

__all__ = [
    "saml_router",
]

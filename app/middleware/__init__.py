"""Middleware components for the SAML federation service."""

from .logging import RequestLoggingMiddleware

__all__ = [
    "RequestLoggingMiddleware",
]

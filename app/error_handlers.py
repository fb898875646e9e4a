"""
Exception handlers for the SAML federation API.

Every error leaves the service in the same shape:

    {
        "success": false,
        "error": "Human-readable message",
        "error_code": "MACHINE_READABLE_CODE",
        "details": {...}          # only when there is something safe to show
    }

Messages that look like they carry key material, credentials or connection
strings are replaced with a generic text, and only allow-listed detail keys
are returned. 5xx responses are reported to Sentry.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.auth.saml.errors import SamlError
from src.config import get_settings

from .exceptions import ErrorCode, FederationException, from_saml_error

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An error occurred while processing your request"
MAX_MESSAGE_LENGTH = 500
MAX_LIST_ITEMS = 10

_LEAKY = re.compile(
    r"api[_-]?key|secret|password|private[_ -]?key|bearer|cookie"
    r"|BEGIN [A-Z ]+-----"
    r"|(?:redis|rediss|postgres|mysql)://"
    r"|\$\{\w+\}",
    re.IGNORECASE,
)
_IPV4 = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")

SAFE_DETAIL_KEYS = frozenset({
    "field",
    "binding",
    "entity_id",
    "metadata_url",
    "status_code",
    "missing_attributes",
    "errors",
    "authentication_method",
    "error_reference",
    "sentry_event_id",
})

_STATUS_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    422: ErrorCode.VALIDATION_ERROR,
    500: ErrorCode.INTERNAL_ERROR,
}


def sanitize_error_message(message: Optional[str]) -> Optional[str]:
    """Replace leaky messages, mask IP addresses and cap the length."""
    if not message:
        return message
    if _LEAKY.search(message):
        return GENERIC_MESSAGE

    message = _IPV4.sub("[ip]", message)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_error_message(value)
    return value


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep allow-listed keys with scalar or list values."""
    sanitized: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in SAFE_DETAIL_KEYS:
            continue
        if isinstance(value, (str, int, float, bool)):
            sanitized[key] = _sanitize_value(value)
        elif isinstance(value, list):
            sanitized[key] = [
                _sanitize_value(item)
                for item in value[:MAX_LIST_ITEMS]
                if isinstance(item, (str, int, float, bool, dict))
            ]
    return sanitized


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten request validation errors into ``{"field", "message"}`` pairs."""
    formatted = []
    for error in errors[:MAX_LIST_ITEMS]:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(location) or "request"
        error_type = error.get("type", "")

        if error_type == "missing":
            message = f"Field '{field}' is required"
        elif error_type.startswith("bool_"):
            message = f"Field '{field}' must be a boolean"
        else:
            message = sanitize_error_message(error.get("msg", "Invalid value"))

        formatted.append({"field": field, "message": message})
    return formatted


def create_error_response(
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code,
    }
    safe_details = sanitize_details(details)
    if safe_details:
        content["details"] = safe_details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def report_to_sentry(
    exc: Exception,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Send an exception to Sentry when a client is configured.

    Only the method and path of the request are attached; SAML payloads
    and headers stay out of the event.

    Returns:
        The Sentry event ID, or None when nothing was sent.
    """
    if not sentry_sdk.get_client().is_active():
        return None

    try:
        with sentry_sdk.new_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                request_id = getattr(request.state, "request_id", None)
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning(f"Could not report exception to Sentry: {e}")
        return None


async def federation_exception_handler(request: Request, exc: FederationException) -> JSONResponse:
    summary = f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    if exc.internal_message:
        summary = f"{summary} ({exc.internal_message})"

    if exc.status_code >= 500:
        logger.error(summary, exc_info=exc)
        report_to_sentry(exc, request)
    else:
        logger.warning(summary)

    return create_error_response(
        status_code=exc.status_code,
        error=exc.message,
        error_code=exc.error_code.value,
        details=exc.details,
    )


async def saml_exception_handler(request: Request, exc: SamlError) -> JSONResponse:
    """Handle errors from the SAML package through their HTTP counterparts."""
    translated = from_saml_error(exc)
    translated.__cause__ = exc
    return await federation_exception_handler(request, translated)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_pydantic_errors(exc.errors())
    logger.warning(f"Rejected {request.method} {request.url.path}: {len(errors)} invalid field(s)")

    message = errors[0]["message"] if len(errors) == 1 else f"Validation failed with {len(errors)} error(s)"
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error=message,
        error_code=ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        f"HTTP {exc.status_code} on {request.method} {request.url.path}: {detail}",
    )

    headers = None
    if exc.headers and "WWW-Authenticate" in exc.headers:
        headers = {"WWW-Authenticate": exc.headers["WWW-Authenticate"]}

    return create_error_response(
        status_code=exc.status_code,
        error=detail,
        error_code=_STATUS_CODES.get(exc.status_code, ErrorCode.UNKNOWN_ERROR).value,
        headers=headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for unexpected errors.

    The client gets a short reference it can quote; the traceback stays in
    the log and in Sentry.
    """
    reference = uuid.uuid4().hex[:8]
    logger.error(
        f"Unhandled {type(exc).__name__} [ref:{reference}] on {request.method} {request.url.path}",
        exc_info=exc,
    )
    event_id = report_to_sentry(exc, request, extra_context={"error_reference": reference})

    details: Dict[str, Any] = {"error_reference": reference}
    if get_settings().is_production:
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
        if event_id:
            details["sentry_event_id"] = event_id

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=message,
        error_code=ErrorCode.INTERNAL_ERROR.value,
        details=details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FederationException, federation_exception_handler)
    app.add_exception_handler(SamlError, saml_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

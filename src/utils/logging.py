"""
Logging setup for the SAML federation service.

JSON lines in production, a compact colored format in development. Every
record carries the ID of the request being served, and SAML messages,
PEM private keys and credentials are masked before any handler formats them.
"""

import json
import logging
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from src.config import LoggingSettings, SecuritySettings

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

# Replacements keep the field name so redacted lines stay searchable
_REDACTIONS: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(r"(SAML(?:Response|Request)[\"']?\s*[:=]\s*[\"']?)[\w+/=%-]+"),
        rf"\1{REDACTED}",
    ),
    (
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
        REDACTED,
    ),
    (
        re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[\w-]+", re.IGNORECASE),
        rf"\1{REDACTED}",
    ),
    (
        re.compile(r"((?:password|secret)[\"']?\s*[:=]\s*[\"']?)[^\s,}\"']+", re.IGNORECASE),
        rf"\1{REDACTED}",
    ),
    (re.compile(r"(bearer\s+)[\w.-]+", re.IGNORECASE), rf"\1{REDACTED}"),
]

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "request_id", "taskName"}


def redact_sensitive_data(message: str) -> str:
    """Mask SAML payloads, private keys and credentials in a log message."""
    if not message:
        return message
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Stamp each record with the ID of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_sensitive_data(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_sensitive_data(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for log shippers.

    Fields passed with ``extra=`` are grouped under ``"extra"``; errors
    without a traceback carry their source location instead.
    """

    def __init__(self, service_name: str = "saml-federation"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
        }

        extra = _extra_fields(record)
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        elif record.levelno >= logging.ERROR:
            entry["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        return json.dumps(entry, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"

        line = super().format(record)
        extra = _extra_fields(record)
        if extra:
            line = f"{line} {extra}"

        color = self.LEVEL_COLORS.get(record.levelno)
        return f"\033[{color}m{line}\033[0m" if color else line


def setup_logging(
    service_name: str = "saml-federation",
    settings: Optional[LoggingSettings] = None,
) -> logging.Logger:
    """
    Install the root handler. Call once, before anything else logs.

    Args:
        service_name: Value of the ``service`` field in JSON output
        settings: Logging settings; read from the environment when omitted

    Returns:
        The root logger
    """
    settings = settings or LoggingSettings()
    json_output = settings.log_format_json or SecuritySettings().is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if json_output else DevelopmentFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(settings.log_level)

    # xmlschema is pulled in by python3-saml and logs every schema load
    for noisy in ("httpx", "httpcore", "uvicorn.access", "xmlschema"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging configured",
        extra={"log_level": settings.log_level, "log_format": "json" if json_output else "text"},
    )
    return root


def set_request_context(request_id: Optional[str] = None) -> None:
    _request_id.set(request_id)


def clear_request_context() -> None:
    _request_id.set(None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class Timer:
    """
    Measure a block and log how long it took.

        with Timer("saml_metadata_fetch", logger):
            response = await client.get(url)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
    ):
        self.operation = operation
        self.logger = logger
        self.level = level
        self.elapsed_ms = 0.0
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger is not None:
            self.logger.log(
                self.level,
                f"{self.operation} took {self.elapsed_ms:.1f}ms",
                extra={
                    "operation": self.operation,
                    "duration_ms": round(self.elapsed_ms, 2),
                    "failed": exc_type is not None,
                },
            )
        return False

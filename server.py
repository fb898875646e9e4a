"""
SAML federation server.

This is the main entry point that assembles the modular components from the
app package and owns the process-wide SamlService.
"""

import os
from contextlib import asynccontextmanager

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from src.utils.logging import setup_logging

logger = setup_logging(service_name="saml-federation")

from src.auth.saml.service import SamlService
from src.config import Settings, get_settings
from src.storage.redis_client import RedisClient
from src.storage.settings_repository import (
    InMemorySettingsRepository,
    RedisSettingsRepository,
    SettingsRepository,
)
from src.storage.user_repository import InMemoryUserRepository

from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import saml_router

settings: Settings = get_settings()
logger.info("Configuration loaded", extra=settings.get_config_summary())


def _init_sentry() -> None:
    if not settings.is_sentry_configured:
        logger.info("No Sentry DSN; errors are only logged")
        return

    sentry_sdk.init(
        dsn=settings.sentry.sentry_dsn,
        environment=settings.sentry.sentry_environment,
        traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        # Assertions carry names and email addresses
        send_default_pii=False,
        attach_stacktrace=True,
    )
    logger.info("Sentry enabled", extra={"sentry_environment": settings.sentry.sentry_environment})


_init_sentry()



# =============================================================================
# Lifespan
# =============================================================================


async def _build_settings_repository(redis_client: RedisClient) -> SettingsRepository:
    if settings.is_redis_configured:
        client = await redis_client.get_client()
        if client is not None:
            return RedisSettingsRepository(client, prefix=settings.redis.redis_settings_prefix)
        logger.warning("Redis unavailable; SAML settings will not survive a restart")
    return InMemorySettingsRepository()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the SamlService on startup and close shared resources on shutdown."""
    redis_client = RedisClient(settings.redis.redis_url or "")
    settings_repository = await _build_settings_repository(redis_client)

    saml_service = SamlService(
        settings=settings.saml,
        settings_repository=settings_repository,
        user_repository=InMemoryUserRepository(),
    )
    await saml_service.init()
    app.state.saml_service = saml_service

    yield

    await redis_client.close()


# =============================================================================
# Initialize FastAPI App
# =============================================================================

app = FastAPI(
    title="SAML Federation API",
    description="SAML 2.0 single sign-on: federation configuration, login initiation and assertion consumption.",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "saml", "description": "SAML 2.0 federation"},
    ],
)

register_exception_handlers(app)

if settings.logging.request_logging_enabled:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(saml_router, prefix=f"/{settings.saml.rest_endpoint}")


@app.get("/health", tags=["saml"])
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5678"))
    reload_enabled = os.environ.get("DEV_MODE", "").lower() == "true"
    logger.info(f"Starting SAML federation server on port {port}")
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=reload_enabled)

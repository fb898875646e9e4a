"""
Environment-driven configuration for the SAML federation service.

Settings are grouped by concern, each group read from the environment (and
an optional ``.env`` file) by pydantic-settings:

    from src.config import get_settings

    settings = get_settings()
    if settings.saml.saml_licensed:
        ...

Secrets are held as ``SecretStr`` and never appear in ``get_config_summary``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _read_pem(path: Optional[str]) -> Optional[str]:
    if path and Path(path).is_file():
        return Path(path).read_text().strip()
    return None


class SamlSettings(_EnvSettings):
    """Instance addressing, feature gating and service provider credentials."""

    # Used to build the SP entity ID, the ACS URL and the default relay state
    instance_base_url: str = Field(default="http://localhost:5678", pattern=r"^https?://")
    rest_endpoint: str = "rest"

    saml_licensed: bool = False
    sso_jit_provisioning: bool = True
    saml_login_label: str = "SAML"

    saml_metadata_fetch_timeout: float = Field(default=10.0, gt=0, le=120)

    # A readable *_PATH file takes precedence over the inline PEM value
    saml_sp_cert: Optional[str] = None
    saml_sp_cert_path: Optional[str] = None
    saml_sp_private_key: Optional[SecretStr] = None
    saml_sp_private_key_path: Optional[str] = None

    @field_validator("instance_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("rest_endpoint")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip("/")

    @property
    def rest_url(self) -> str:
        return f"{self.instance_base_url}/{self.rest_endpoint}"

    @property
    def sp_certificate(self) -> str:
        return _read_pem(self.saml_sp_cert_path) or (self.saml_sp_cert or "").strip()

    @property
    def sp_private_key(self) -> str:
        from_file = _read_pem(self.saml_sp_private_key_path)
        if from_file:
            return from_file
        if self.saml_sp_private_key is None:
            return ""
        return self.saml_sp_private_key.get_secret_value().strip()


class SecuritySettings(_EnvSettings):
    environment: Literal["development", "staging", "production"] = "development"
    # Unset means open configuration endpoints outside production, closed in it
    admin_api_key: Optional[SecretStr] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


class LoggingSettings(_EnvSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    # JSON is always used in production; this forces it elsewhere
    log_format_json: bool = False
    request_logging_enabled: bool = True


class SentrySettings(_EnvSettings):
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    @property
    def is_configured(self) -> bool:
        return bool(self.sentry_dsn)


class RedisSettings(_EnvSettings):
    """Where SAML preferences are persisted. Without a URL they live in memory."""

    redis_url: Optional[str] = None
    redis_settings_prefix: str = "settings:"

    @property
    def is_configured(self) -> bool:
        return bool(self.redis_url)


class Settings(_EnvSettings):
    """All configuration groups of the service."""

    saml: SamlSettings = Field(default_factory=SamlSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    @property
    def is_sentry_configured(self) -> bool:
        return self.sentry.is_configured

    @property
    def is_redis_configured(self) -> bool:
        return self.redis.is_configured

    @property
    def is_production(self) -> bool:
        return self.security.is_production

    def get_config_summary(self) -> Dict[str, Any]:
        """Describe the active configuration for the startup log, without secrets."""
        return {
            "environment": self.security.environment,
            "instance_base_url": self.saml.instance_base_url,
            "saml_licensed": self.saml.saml_licensed,
            "sso_jit_provisioning": self.saml.sso_jit_provisioning,
            "sp_certificate_configured": bool(self.saml.sp_certificate),
            "admin_api_key_configured": self.security.admin_api_key is not None,
            "sentry_configured": self.is_sentry_configured,
            "redis_configured": self.is_redis_configured,
            "log_level": self.logging.log_level,
        }


@lru_cache()
def get_settings() -> Settings:
    """
    Load settings once per process.

    Call ``get_settings.cache_clear()`` to pick up environment changes.
    """
    return Settings()

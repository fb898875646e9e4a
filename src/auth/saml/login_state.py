"""
SAML login state: the login-enabled flag, the login button label and the
instance-wide authentication method.

The authentication method is persisted in the settings store; enabling SAML
login switches it from ``email`` to ``saml`` and disabling switches it back.
"""

import logging

from src.auth.saml.constants import AUTHENTICATION_METHOD_DB_KEY
from src.auth.saml.errors import SamlBadRequestError
from src.storage.settings_repository import SettingsRepository
from src.types.saml import SettingsRow

logger = logging.getLogger(__name__)

AUTH_METHOD_EMAIL = "email"
AUTH_METHOD_SAML = "saml"


class SamlLoginState:
    """Tracks whether SAML login is enabled, independent of preferences validation."""

    def __init__(self, settings_repository: SettingsRepository, login_label: str = "SAML"):
        self._repository = settings_repository
        self._login_enabled = False
        self._login_label = login_label
        self._authentication_method = AUTH_METHOD_EMAIL

    @property
    def login_enabled(self) -> bool:
        return self._login_enabled

    @property
    def login_label(self) -> str:
        return self._login_label

    @property
    def authentication_method(self) -> str:
        return self._authentication_method

    async def load(self) -> None:
        """Read the persisted authentication method."""
        row = await self._repository.get(AUTHENTICATION_METHOD_DB_KEY)
        if row and row.value:
            self._authentication_method = row.value
        self._login_enabled = self._authentication_method == AUTH_METHOD_SAML

    async def set_login_enabled(self, enabled: bool) -> None:
        """
        Enable or disable SAML login and switch the authentication method.

        Raises:
            SamlBadRequestError: If enabling while an authentication method
                other than email or saml (e.g. ldap) is active
        """
        current = self._authentication_method

        if enabled:
            self.ensure_can_enable()
            self._login_enabled = True
            if current != AUTH_METHOD_SAML:
                await self._set_authentication_method(AUTH_METHOD_SAML)
            return

        self._login_enabled = False
        if current == AUTH_METHOD_SAML:
            await self._set_authentication_method(AUTH_METHOD_EMAIL)

    def ensure_can_enable(self) -> None:
        """Raise SamlBadRequestError when enabling would override another login method."""
        current = self._authentication_method
        if current not in (AUTH_METHOD_EMAIL, AUTH_METHOD_SAML):
            raise SamlBadRequestError(
                "Cannot switch SAML login enabled state when an authentication "
                f"method other than email or saml ({current}) is active",
                details={"authentication_method": current},
            )

    def set_login_label(self, label: str) -> None:
        self._login_label = label

    def is_licensed_and_enabled(self, licensed: bool) -> bool:
        return (
            licensed
            and self._login_enabled
            and self._authentication_method == AUTH_METHOD_SAML
        )

    async def _set_authentication_method(self, method: str) -> None:
        await self._repository.save(
            SettingsRow(
                key=AUTHENTICATION_METHOD_DB_KEY,
                value=method,
                load_on_startup=True,
            )
        )
        logger.info(
            f"Authentication method switched from {self._authentication_method} to {method}",
        )
        self._authentication_method = method

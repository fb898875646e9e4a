"""
Boot-time activation of SAML with self-healing.

If the persisted configuration turns out to be corrupted (metadata that no
longer validates, or a row that is not a preferences object), SAML is
disabled, email login is restored and the row is deleted. Any other failure
propagates and stops startup.
"""

import logging
from typing import Awaitable, Callable

from src.auth.saml.errors import InvalidSamlMetadataError, PreferencesParseError

logger = logging.getLogger(__name__)


class RecoveryController:
    def __init__(
        self,
        activate: Callable[[], Awaitable[None]],
        reset: Callable[[], Awaitable[None]],
    ):
        self._activate = activate
        self._reset = reset

    async def run(self) -> bool:
        """
        Run activation, resetting on corrupted configuration.

        Returns:
            True if activation succeeded, False if a reset was performed
        """
        try:
            await self._activate()
            return True
        except (InvalidSamlMetadataError, PreferencesParseError) as e:
            logger.warning(
                f"SAML initialization failed because of invalid metadata in database: {e.message}. "
                "IMPORTANT: Disabling SAML and switching to email-based login for all users. "
                "Please review your configuration and re-enable SAML.",
                extra={"error_code": e.error_code},
            )
            await self._reset()
            return False

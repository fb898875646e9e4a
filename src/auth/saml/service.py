"""
SAML Federation Service.

This module wires the SAML components together and exposes the operations
used by the HTTP layer:
- Preferences read/update (with metadata resolution and validation)
- Login request construction in the redirect or post binding
- Response handling and identity reconciliation
- Service Provider metadata generation
- Boot-time activation with self-healing, and reset

Security Considerations:
- The protocol layer runs in strict mode; unsigned or mis-addressed
  responses are rejected by python3-saml
- Only fully verified assertions reach identity reconciliation
- Corrupted persisted configuration disables SAML and restores email login

Dependencies:
- python3-saml: pip install python3-saml
"""

import logging
from typing import Any, Dict, Optional

import httpx

from src.auth.saml.errors import SamlBadRequestError
from src.auth.saml.login_request import LoginRequestBuilder
from src.auth.saml.login_state import SamlLoginState
from src.auth.saml.metadata import MetadataResolver
from src.auth.saml.preferences import PreferenceStore
from src.auth.saml.reconciler import IdentityReconciler
from src.auth.saml.recovery import RecoveryController
from src.auth.saml.response import ResponseProcessor
from src.auth.saml.service_provider import ServiceProviderConfig, build_saml_settings
from src.auth.saml.toolkit import SamlToolkit
from src.config import SamlSettings
from src.storage.settings_repository import SettingsRepository
from src.storage.user_repository import UserRepository
from src.types.saml import (
    FederationPreferences,
    FederationPreferencesPatch,
    LoginRequest,
    ReconcileResult,
    SamlLoginBinding,
)

logger = logging.getLogger(__name__)


class SamlService:
    """
    SAML federation facade. One instance per process.
    """

    def __init__(
        self,
        settings: SamlSettings,
        settings_repository: SettingsRepository,
        user_repository: UserRepository,
        toolkit: Optional[SamlToolkit] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.toolkit = toolkit or SamlToolkit()
        self.service_provider = ServiceProviderConfig.from_settings(settings)

        self.login_state = SamlLoginState(settings_repository, settings.saml_login_label)
        self.metadata_resolver = MetadataResolver(
            self.toolkit,
            timeout=settings.saml_metadata_fetch_timeout,
            transport=http_transport,
        )
        self.store = PreferenceStore(
            settings_repository,
            self.login_state,
            self.toolkit,
            self.metadata_resolver,
            instance_base_url=settings.instance_base_url,
        )
        self.login_requests = LoginRequestBuilder(
            self.store,
            self.toolkit,
            self.service_provider,
            instance_base_url=settings.instance_base_url,
        )
        self.responses = ResponseProcessor(self.store, self.toolkit, self.service_provider)
        self.reconciler = IdentityReconciler(
            user_repository,
            jit_provisioning=settings.sso_jit_provisioning,
        )
        self.recovery = RecoveryController(activate=self._activate, reset=self.reset)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """
        Load persisted state at process start.

        Preferences are first merged passively so the protocol library is
        not imported unless SAML is licensed and enabled.
        """
        await self.login_state.load()
        activated = await self.recovery.run()
        logger.info(
            "SAML service initialized",
            extra={
                "saml_active": activated and self.is_licensed_and_enabled,
                "protocol_state": self.toolkit.state.value,
            },
        )

    async def _activate(self) -> None:
        await self.store.load_from_persistence(apply=False)
        if self.is_licensed_and_enabled:
            await self.toolkit.load()
            await self.store.load_from_persistence(apply=True)

    async def reset(self) -> None:
        """Disable SAML, switch to email login and delete the stored configuration."""
        await self.login_state.set_login_enabled(False)
        await self.store.delete_from_persistence()
        self.store.reset_to_defaults()
        logger.warning("SAML configuration reset; email login restored")

    @property
    def is_licensed_and_enabled(self) -> bool:
        return self.login_state.is_licensed_and_enabled(self.settings.saml_licensed)

    # =========================================================================
    # Preferences
    # =========================================================================

    def get_preferences(self) -> FederationPreferences:
        return self.store.preferences

    async def set_preferences(self, patch: FederationPreferencesPatch) -> FederationPreferences:
        return await self.store.set_preferences(patch)

    async def toggle_login_enabled(self, enabled: bool) -> FederationPreferences:
        """Flip the login-enabled flag and persist it without revalidating metadata."""
        await self.login_state.set_login_enabled(enabled)
        return await self.store.save_to_persistence()

    # =========================================================================
    # Login flow
    # =========================================================================

    async def get_login_request_url(
        self,
        relay_state: Optional[str] = None,
        binding: Optional[SamlLoginBinding] = None,
    ) -> LoginRequest:
        await self.toolkit.load()
        return self.login_requests.build_request(relay_state=relay_state, binding=binding)

    async def handle_saml_login(
        self,
        request_data: Dict[str, Any],
        binding: SamlLoginBinding,
    ) -> ReconcileResult:
        """
        Validate an inbound response and reconcile the asserted identity.

        Raises:
            SamlBadRequestError: If no attribute mapping is configured
            SamlAuthenticationError: If the response is rejected
        """
        await self.toolkit.load()
        attributes = self.responses.parse(request_data, binding)
        result = await self.reconciler.reconcile(attributes)

        logger.info(
            "SAML login handled",
            extra={
                "binding": binding.value,
                "user_matched": result.authenticated_user is not None,
                "onboarding_required": result.onboarding_required,
            },
        )
        return result

    # =========================================================================
    # Service Provider metadata
    # =========================================================================

    async def generate_sp_metadata(self) -> str:
        """
        Generate Service Provider (SP) metadata XML.

        Raises:
            SamlBadRequestError: If the generated metadata does not validate
        """
        await self.toolkit.load()
        saml_settings = self.toolkit.build_settings(
            build_saml_settings(self.store.current, self.service_provider),
            sp_validation_only=True,
        )
        metadata = saml_settings.get_sp_metadata()
        if isinstance(metadata, bytes):
            metadata = metadata.decode("utf-8")

        errors = saml_settings.validate_metadata(metadata)
        if errors:
            raise SamlBadRequestError(
                f"Generated SP metadata is invalid: {', '.join(errors)}",
                details={"errors": errors},
            )
        return metadata

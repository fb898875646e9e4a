"""
Lazy python3-saml protocol layer.

The onelogin.saml2 modules (and the xmlsec/lxml stack behind them) are only
imported when SAML is actually used. Loading is single-flight: concurrent
callers share one import, and once the toolkit is READY further calls
return immediately.

The toolkit also owns the cached IdentityProviderDescriptor, which is only
rebuilt when a caller explicitly asks for it.
"""

import asyncio
import importlib
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from src.auth.saml.errors import (
    InvalidSamlMetadataError,
    SamlBadRequestError,
    SamlNotInitializedError,
)
from src.types.saml import IdentityProviderDescriptor, SamlLoginBinding

logger = logging.getLogger(__name__)

PROTOCOL_MODULES: Dict[str, str] = {
    "auth": "onelogin.saml2.auth",
    "authn_request": "onelogin.saml2.authn_request",
    "errors": "onelogin.saml2.errors",
    "idp_metadata_parser": "onelogin.saml2.idp_metadata_parser",
    "settings": "onelogin.saml2.settings",
    "utils": "onelogin.saml2.utils",
    "xml_utils": "onelogin.saml2.xml_utils",
}


class ToolkitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


class SamlToolkit:
    """Protocol layer state machine plus the identity provider cache."""

    def __init__(self, importer: Callable[[str], Any] = importlib.import_module):
        self._importer = importer
        self._modules: Dict[str, Any] = {}
        self._state = ToolkitState.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._identity_provider: Optional[IdentityProviderDescriptor] = None

    @property
    def state(self) -> ToolkitState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ToolkitState.READY

    async def load(self) -> None:
        """Import the protocol library once. Safe to call from many tasks."""
        if self._state == ToolkitState.READY:
            return

        async with self._lock:
            if self._state == ToolkitState.READY:
                return

            logger.debug("Loading python3-saml protocol library")
            modules: Dict[str, Any] = {}
            for name, module_path in PROTOCOL_MODULES.items():
                modules[name] = await asyncio.to_thread(self._importer, module_path)

            self._modules = modules
            self._state = ToolkitState.READY
            logger.info("SAML protocol library loaded")

    def ensure_ready(self) -> None:
        if self._state != ToolkitState.READY:
            raise SamlNotInitializedError()

    def module(self, name: str) -> Any:
        """Return a loaded protocol module by its short name."""
        self.ensure_ready()
        return self._modules[name]

    @property
    def protocol_error(self) -> type:
        """The base exception class raised by python3-saml."""
        return self.module("errors").OneLogin_Saml2_Error

    def build_settings(self, settings: Dict[str, Any], sp_validation_only: bool = False) -> Any:
        """
        Build a OneLogin_Saml2_Settings object from a settings dict.

        Raises:
            SamlBadRequestError: If python3-saml rejects the settings
                (e.g. signing requested without an SP key)
        """
        settings_class = self.module("settings").OneLogin_Saml2_Settings
        try:
            return settings_class(settings, sp_validation_only=sp_validation_only)
        except self.protocol_error as e:
            raise SamlBadRequestError(
                f"Invalid SAML settings: {e}",
                details={"error": str(e)},
            ) from e

    # =========================================================================
    # Identity provider descriptor
    # =========================================================================

    def parse_identity_provider(self, metadata: str) -> IdentityProviderDescriptor:
        """
        Derive an IdentityProviderDescriptor from IdP metadata XML.

        Raises:
            InvalidSamlMetadataError: If the metadata cannot be parsed or
                describes no identity provider
        """
        parser = self.module("idp_metadata_parser").OneLogin_Saml2_IdPMetadataParser

        entity_id: Optional[str] = None
        sso_urls: Dict[SamlLoginBinding, str] = {}
        x509cert: Optional[str] = None
        x509cert_multi = None

        for binding in SamlLoginBinding:
            try:
                parsed = parser.parse(metadata, required_sso_binding=binding.urn)
            except Exception as e:
                raise InvalidSamlMetadataError(
                    details={"error": str(e)},
                ) from e

            idp = (parsed or {}).get("idp") or {}
            if not idp.get("entityId"):
                continue

            entity_id = entity_id or idp["entityId"]
            sso_url = (idp.get("singleSignOnService") or {}).get("url")
            if sso_url:
                sso_urls[binding] = sso_url
            x509cert = x509cert or idp.get("x509cert")
            x509cert_multi = x509cert_multi or idp.get("x509certMulti")

        if not entity_id:
            raise InvalidSamlMetadataError(
                "SAML metadata does not describe an identity provider",
            )

        return IdentityProviderDescriptor(
            entity_id=entity_id,
            sso_urls=sso_urls,
            x509cert=x509cert,
            x509cert_multi=x509cert_multi,
        )

    def get_identity_provider(
        self,
        metadata: str,
        force_recreate: bool = False,
    ) -> IdentityProviderDescriptor:
        """Return the cached descriptor, building it on first use or on request."""
        self.ensure_ready()
        if self._identity_provider is None or force_recreate:
            self._identity_provider = self.parse_identity_provider(metadata)
        return self._identity_provider

    def invalidate_identity_provider(self) -> None:
        self._identity_provider = None

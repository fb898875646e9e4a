"""
SAML Federation Type Definitions.

This module defines the data models for SAML federation:
- Federation preferences (persisted as JSON under a single settings key)
- Derived identity provider descriptor
- Mapped user attributes extracted from an assertion
- Login request binding contexts
- Local users and their linked auth identities

Security Considerations:
- Preferences are untrusted when read back from storage and must be
  validated before the protocol layer is allowed to use them
- The IdP signing certificate comes from metadata only
- Mapped attributes are only produced for fully verified assertions
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums and Constants
# =============================================================================


class SamlLoginBinding(str, Enum):
    """Wire bindings supported for SAML protocol messages."""

    REDIRECT = "redirect"
    POST = "post"

    @property
    def urn(self) -> str:
        """The SAML 2.0 binding URN for this binding."""
        return SAML_BINDING_URNS[self]


SAML_BINDING_URNS: Dict[SamlLoginBinding, str] = {
    SamlLoginBinding.REDIRECT: "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
    SamlLoginBinding.POST: "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
}

SAML_PROVIDER_TYPE = "saml"

DEFAULT_SIGNATURE_ALGORITHM = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
DEFAULT_DIGEST_ALGORITHM = "http://www.w3.org/2001/04/xmlenc#sha256"


class _CamelModel(BaseModel):
    """Base model serialized with camelCase keys (the persisted row format)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Preferences
# =============================================================================


class AttributeMapping(_CamelModel):
    """
    Claim name to claim URI mapping.

    All four claims are required; each can be pointed at a different URI
    when the IdP uses non-standard attribute names.
    """

    email: str = Field(..., min_length=1, description="Claim carrying the email address")
    first_name: str = Field(..., min_length=1, description="Claim carrying the first name")
    last_name: str = Field(..., min_length=1, description="Claim carrying the last name")
    user_principal_name: str = Field(
        ...,
        min_length=1,
        description="Claim carrying the stable user principal name",
    )


DEFAULT_ATTRIBUTE_MAPPING = AttributeMapping(
    email="http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress",
    first_name="http://schemas.xmlsoap.org/ws/2005/05/identity/claims/firstname",
    last_name="http://schemas.xmlsoap.org/ws/2005/05/identity/claims/lastname",
    user_principal_name="http://schemas.xmlsoap.org/ws/2005/05/identity/claims/upn",
)


class FederationPreferences(_CamelModel):
    """
    Complete SAML federation preferences.

    Metadata is either supplied inline (``metadata``) or fetched from
    ``metadata_url``; when a URL is configured the fetched document is
    stored in ``metadata`` as well.
    """

    mapping: Optional[AttributeMapping] = Field(
        default_factory=lambda: DEFAULT_ATTRIBUTE_MAPPING.model_copy(),
    )
    metadata: str = Field(default="", description="IdP metadata XML")
    metadata_url: Optional[str] = Field(default=None, description="IdP metadata URL")
    ignore_ssl: bool = Field(
        default=False,
        alias="ignoreSSL",
        description="Skip TLS certificate verification when fetching metadata (non-production only)",
    )
    login_binding: SamlLoginBinding = Field(default=SamlLoginBinding.REDIRECT)
    acs_binding: SamlLoginBinding = Field(default=SamlLoginBinding.POST)
    authn_requests_signed: bool = False
    want_assertions_signed: bool = True
    want_message_signed: bool = True
    signature_algorithm: str = DEFAULT_SIGNATURE_ALGORITHM
    digest_algorithm: str = DEFAULT_DIGEST_ALGORITHM
    relay_state: str = Field(default="", description="Default relay state")
    login_enabled: bool = False
    login_label: str = "SAML"


class FederationPreferencesPatch(_CamelModel):
    """
    Partial preferences update. Unset (``None``) fields keep their current value.
    """

    mapping: Optional[AttributeMapping] = None
    metadata: Optional[str] = None
    metadata_url: Optional[str] = None
    ignore_ssl: Optional[bool] = Field(default=None, alias="ignoreSSL")
    login_binding: Optional[SamlLoginBinding] = None
    acs_binding: Optional[SamlLoginBinding] = None
    authn_requests_signed: Optional[bool] = None
    want_assertions_signed: Optional[bool] = None
    want_message_signed: Optional[bool] = None
    signature_algorithm: Optional[str] = None
    digest_algorithm: Optional[str] = None
    relay_state: Optional[str] = None
    login_enabled: Optional[bool] = None
    login_label: Optional[str] = None

    @field_validator("metadata_url")
    @classmethod
    def validate_metadata_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if not v.startswith(("https://", "http://")):
            raise ValueError("Metadata URL must be an http(s) URL")
        return v


# =============================================================================
# Derived Descriptors
# =============================================================================


class IdentityProviderDescriptor(BaseModel):
    """
    Identity provider facts derived from metadata.

    Built from the python3-saml metadata parser output and cached until the
    metadata changes.
    """

    entity_id: str
    sso_urls: Dict[SamlLoginBinding, str] = Field(default_factory=dict)
    x509cert: Optional[str] = None
    x509cert_multi: Optional[Dict[str, List[str]]] = None

    def supports(self, binding: SamlLoginBinding) -> bool:
        return binding in self.sso_urls

    def to_settings(self, binding: SamlLoginBinding) -> Dict:
        """Build the ``idp`` section of python3-saml settings for a binding."""
        settings: Dict = {
            "entityId": self.entity_id,
            "singleSignOnService": {
                "url": self.sso_urls.get(binding, ""),
                "binding": binding.urn,
            },
        }
        if self.x509cert_multi:
            settings["x509certMulti"] = self.x509cert_multi
        if self.x509cert:
            settings["x509cert"] = self.x509cert
        return settings


# =============================================================================
# Login Flow
# =============================================================================


class MappedAttributes(_CamelModel):
    """User attributes extracted from an assertion via the claim mapping."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_principal_name: Optional[str] = None


class RedirectBindingContext(BaseModel):
    """Redirect binding: the browser is sent to ``context`` (a URL)."""

    id: str
    context: str


class PostBindingContext(BaseModel):
    """Post binding: an auto-submitting form posts ``context`` to ``entity_endpoint``."""

    id: str
    context: str
    relay_state: str
    entity_endpoint: str
    type: str = "SAMLRequest"


class LoginRequest(BaseModel):
    """Outbound authentication request in the chosen binding."""

    binding: SamlLoginBinding
    context: Union[RedirectBindingContext, PostBindingContext]


# =============================================================================
# Local Users
# =============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthIdentity(BaseModel):
    """Link between a local user and an external identity."""

    user_id: str
    provider_type: str = SAML_PROVIDER_TYPE
    provider_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class User(BaseModel):
    """Local user record."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "global:member"
    password_hash: Optional[str] = Field(
        default=None,
        description="Local password hash; unusable random hash for JIT-provisioned users",
    )
    auth_identities: List[AuthIdentity] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def find_auth_identity(self, provider_type: str) -> Optional[AuthIdentity]:
        for identity in self.auth_identities:
            if identity.provider_type == provider_type:
                return identity
        return None


class ReconcileResult(BaseModel):
    """Outcome of matching an asserted identity against local users."""

    authenticated_user: Optional[User] = None
    attributes: MappedAttributes
    onboarding_required: bool = False


# =============================================================================
# Persistence
# =============================================================================


class SettingsRow(BaseModel):
    """A single row of the key/value settings store."""

    key: str
    value: str
    load_on_startup: bool = False

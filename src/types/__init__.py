"""
Type definitions for the SAML federation service.
"""

from .saml import (
    AttributeMapping,
    AuthIdentity,
    DEFAULT_ATTRIBUTE_MAPPING,
    FederationPreferences,
    FederationPreferencesPatch,
    IdentityProviderDescriptor,
    LoginRequest,
    MappedAttributes,
    PostBindingContext,
    ReconcileResult,
    RedirectBindingContext,
    SAML_PROVIDER_TYPE,
    SamlLoginBinding,
    SettingsRow,
    User,
)

__all__ = [
    # Preferences
    "AttributeMapping",
    "DEFAULT_ATTRIBUTE_MAPPING",
    "FederationPreferences",
    "FederationPreferencesPatch",
    "SamlLoginBinding",
    # Derived descriptors
    "IdentityProviderDescriptor",
    # Login flow
    "LoginRequest",
    "MappedAttributes",
    "PostBindingContext",
    "RedirectBindingContext",
    "ReconcileResult",
    # Users
    "AuthIdentity",
    "SAML_PROVIDER_TYPE",
    "User",
    # Persistence
    "SettingsRow",
]

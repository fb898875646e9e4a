"""
Service Provider configuration for python3-saml.

Builds the settings dictionary consumed by OneLogin_Saml2_Auth and
OneLogin_Saml2_Settings from the federation preferences, the cached
identity provider descriptor and this instance's SP identity.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel

from src.auth.saml.constants import NAMEID_FORMAT_EMAIL, SP_ACS_PATH, SP_METADATA_PATH
from src.config import SamlSettings
from src.types.saml import (
    FederationPreferences,
    IdentityProviderDescriptor,
    SamlLoginBinding,
)


def _strip_pem_headers(cert: str) -> str:
    """Remove PEM headers and footers, return raw certificate."""
    lines = cert.strip().split("\n")
    cert_lines = [
        line.strip()
        for line in lines
        if not line.startswith("-----")
    ]
    return "".join(cert_lines)


class ServiceProviderConfig(BaseModel):
    """This instance's identity as a SAML service provider."""

    entity_id: str
    acs_url: str
    x509cert: str = ""
    private_key: str = ""

    @classmethod
    def from_settings(cls, settings: SamlSettings) -> "ServiceProviderConfig":
        cert = settings.sp_certificate
        return cls(
            entity_id=f"{settings.rest_url}/{SP_METADATA_PATH}",
            acs_url=f"{settings.rest_url}/{SP_ACS_PATH}",
            x509cert=_strip_pem_headers(cert) if cert else "",
            private_key=settings.sp_private_key,
        )


def build_saml_settings(
    preferences: FederationPreferences,
    sp: ServiceProviderConfig,
    idp: Optional[IdentityProviderDescriptor] = None,
    login_binding: Optional[SamlLoginBinding] = None,
) -> Dict[str, Any]:
    """
    Build settings dictionary for python3-saml library.

    Args:
        preferences: Current federation preferences
        sp: Service provider identity
        idp: Identity provider descriptor; omitted when only SP metadata is needed
        login_binding: Binding whose SSO URL goes into the idp section

    Returns:
        Settings dictionary compatible with OneLogin_Saml2_Auth
    """
    binding = login_binding or preferences.login_binding

    settings: Dict[str, Any] = {
        "strict": True,
        "debug": False,
        "sp": {
            "entityId": sp.entity_id,
            "assertionConsumerService": {
                "url": sp.acs_url,
                "binding": preferences.acs_binding.urn,
            },
            "NameIDFormat": NAMEID_FORMAT_EMAIL,
            "x509cert": sp.x509cert,
            "privateKey": sp.private_key,
        },
        "idp": idp.to_settings(binding) if idp else {},
        "security": {
            "nameIdEncrypted": False,
            "authnRequestsSigned": preferences.authn_requests_signed,
            "signMetadata": False,
            "wantMessagesSigned": preferences.want_message_signed,
            "wantAssertionsSigned": preferences.want_assertions_signed,
            "wantAssertionsEncrypted": False,
            "wantNameId": False,
            "wantNameIdEncrypted": False,
            "wantAttributeStatement": True,
            "signatureAlgorithm": preferences.signature_algorithm,
            "digestAlgorithm": preferences.digest_algorithm,
            "rejectUnsolicitedResponsesWithInResponseTo": False,
        },
    }

    return settings


def build_request_data(
    http_host: str,
    server_port: Optional[int],
    request_uri: str,
    https: bool = True,
    post_data: Optional[Dict[str, str]] = None,
    get_data: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build request data dictionary for python3-saml.

    Returns:
        Request data dictionary for OneLogin_Saml2_Auth
    """
    request_data: Dict[str, Any] = {
        "https": "on" if https else "off",
        "http_host": http_host,
        "script_name": request_uri,
        "get_data": get_data or {},
        "post_data": post_data or {},
    }
    if server_port is not None:
        request_data["server_port"] = server_port
    return request_data


def build_acs_request_data(
    acs_url: str,
    post_data: Optional[Dict[str, str]] = None,
    get_data: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build request data addressed to the configured ACS URL.

    python3-saml checks the response Destination against the URL described
    by the request data, so it is derived from the public ACS URL rather than
    from whatever host the request reached behind a proxy.
    """
    parts = urlsplit(acs_url)
    return build_request_data(
        http_host=parts.hostname or "",
        server_port=parts.port,
        request_uri=parts.path,
        https=parts.scheme == "https",
        post_data=post_data,
        get_data=get_data,
    )

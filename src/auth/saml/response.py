"""
Inbound SAML response processing.

python3-saml verifies signatures, conditions and audience; this module turns
every failure it reports into a SamlAuthenticationError and maps the
verified attributes onto the configured claim names.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from src.auth.saml.errors import SamlAuthenticationError, SamlBadRequestError
from src.auth.saml.preferences import PreferenceStore
from src.auth.saml.service_provider import ServiceProviderConfig, build_saml_settings
from src.auth.saml.toolkit import SamlToolkit
from src.types.saml import AttributeMapping, MappedAttributes, SamlLoginBinding

logger = logging.getLogger(__name__)

PARSE_FAILED_MESSAGE = "SAML Authentication failed. Could not parse SAML response."


def _first_value(attributes: Dict[str, Any], claim: str) -> Optional[str]:
    values = attributes.get(claim)
    if isinstance(values, (list, tuple)):
        values = values[0] if values else None
    return values or None


def map_attributes(
    attributes: Dict[str, Any],
    mapping: AttributeMapping,
) -> Tuple[MappedAttributes, List[str]]:
    """
    Map raw assertion attributes onto the configured claims.

    Returns:
        Tuple of (mapped attributes, missing claim URIs in the order
        email, user principal name, first name, last name)
    """
    mapped = MappedAttributes(
        email=_first_value(attributes, mapping.email),
        first_name=_first_value(attributes, mapping.first_name),
        last_name=_first_value(attributes, mapping.last_name),
        user_principal_name=_first_value(attributes, mapping.user_principal_name),
    )

    missing: List[str] = []
    if not mapped.email:
        missing.append(mapping.email)
    if not mapped.user_principal_name:
        missing.append(mapping.user_principal_name)
    if not mapped.first_name:
        missing.append(mapping.first_name)
    if not mapped.last_name:
        missing.append(mapping.last_name)

    return mapped, missing


class ResponseProcessor:
    """Validates inbound responses and extracts mapped attributes."""

    def __init__(
        self,
        store: PreferenceStore,
        toolkit: SamlToolkit,
        service_provider: ServiceProviderConfig,
    ):
        self._store = store
        self._toolkit = toolkit
        self._sp = service_provider

    def parse(
        self,
        request_data: Dict[str, Any],
        binding: SamlLoginBinding,
    ) -> MappedAttributes:
        """
        Validate a SAML response and return its mapped attributes.

        Args:
            request_data: python3-saml request data carrying SAMLResponse
            binding: Binding the response arrived on

        Raises:
            SamlBadRequestError: If no attribute mapping is configured
            SamlAuthenticationError: If the response fails validation or
                lacks a mapped claim
        """
        preferences = self._store.current
        if preferences.mapping is None:
            raise SamlBadRequestError("Error fetching SAML Attributes, no Attribute mapping set")

        try:
            auth = self._process(request_data, binding)
        except Exception as e:
            logger.warning(f"SAML response rejected by protocol layer: {e}")
            raise SamlAuthenticationError(
                f"{PARSE_FAILED_MESSAGE} {e}",
                details={"binding": binding.value},
            ) from e

        errors = auth.get_errors()
        if errors:
            reason = auth.get_last_error_reason() or ", ".join(errors)
            logger.warning(
                f"SAML response validation failed: {reason}",
                extra={"saml_errors": errors},
            )
            raise SamlAuthenticationError(
                f"{PARSE_FAILED_MESSAGE} {reason}",
                details={"errors": errors},
            )

        if not auth.is_authenticated():
            raise SamlAuthenticationError(f"{PARSE_FAILED_MESSAGE} Response is not authenticated")

        mapped, missing = map_attributes(auth.get_attributes() or {}, preferences.mapping)
        if missing:
            raise SamlAuthenticationError(
                "SAML Authentication failed. Invalid SAML response "
                f"(missing attributes: {', '.join(missing)}).",
                details={"missing_attributes": missing},
            )

        return mapped

    def _process(self, request_data: Dict[str, Any], binding: SamlLoginBinding) -> Any:
        preferences = self._store.current
        idp = self._toolkit.get_identity_provider(preferences.metadata)
        settings = self._toolkit.build_settings(
            build_saml_settings(preferences, self._sp, idp)
        )

        if binding == SamlLoginBinding.REDIRECT:
            request_data = self._inflate_redirect_response(request_data)

        auth_class = self._toolkit.module("auth").OneLogin_Saml2_Auth
        auth = auth_class(request_data, old_settings=settings)
        auth.process_response()
        return auth

    def _inflate_redirect_response(self, request_data: Dict[str, Any]) -> Dict[str, Any]:
        """Move a deflated query-string SAMLResponse into post_data as plain base64."""
        get_data = request_data.get("get_data") or {}
        encoded = get_data.get("SAMLResponse")
        if not encoded:
            return request_data

        utils = self._toolkit.module("utils").OneLogin_Saml2_Utils
        xml = utils.decode_base64_and_inflate(encoded)

        post_data = dict(request_data.get("post_data") or {})
        post_data["SAMLResponse"] = utils.b64encode(xml)
        if "RelayState" in get_data and "RelayState" not in post_data:
            post_data["RelayState"] = get_data["RelayState"]

        return {**request_data, "post_data": post_data}
